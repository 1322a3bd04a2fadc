"""Progress reporting for a running conversation loop.

ProgressThrottler decides when a live surface may be refreshed: either the
update is forced, or at least ``interval`` seconds have passed AND at least
``min_chars`` characters were appended since the last push.

Two strategies sit on top of it:
- LiveProgress: interactive, throttled edits of one message on a surface
- SilentProgress: batch, nothing shown until the caller posts the result
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

from quarry.api.models import Attachment

logger = logging.getLogger(__name__)

THINKING_PLACEHOLDER = "\U0001f4ad Thinking..."
NO_ANSWER_TEXT = "I couldn't produce an answer this time."


class ProgressSurface(Protocol):
    """External mutable display: first push posts, later pushes edit in place."""

    async def push(self, text: str, attachments: list[Attachment] | None = None) -> None: ...


@dataclass
class ProgressState:
    last_pushed_text: str = ""
    last_push_at: float = 0.0


class ProgressThrottler:
    """Dual-threshold (time AND size) rate limiter with a forced escape hatch."""

    def __init__(
        self,
        interval: float = 1.0,
        min_chars: int = 50,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._interval = interval
        self._min_chars = min_chars
        self._clock = clock
        self.state = ProgressState(last_push_at=clock())

    def should_push(self, text: str, forced: bool = False) -> bool:
        if forced:
            return True
        elapsed = self._clock() - self.state.last_push_at
        appended = len(text) - len(self.state.last_pushed_text)
        return elapsed >= self._interval and appended >= self._min_chars

    def mark_pushed(self, text: str) -> None:
        self.state.last_pushed_text = text
        self.state.last_push_at = self._clock()


def format_reasoning(text: str) -> str:
    return f"\U0001f4ad **Thinking...**\n```\n{text}\n```"


class ProgressReporter:
    """Progress strategy interface. The base implementation shows nothing."""

    async def update(self, text: str, force: bool = False) -> None:
        """Current response text changed."""

    async def reasoning(self, text: str) -> None:
        """Accumulated reasoning text changed."""

    async def tool_status(self, response_text: str, status: str) -> None:
        """A tool is about to run."""

    async def deliver(self, attachments: list[Attachment]) -> None:
        """Out-of-band artifacts produced by a tool."""

    async def finish(self, answer: str) -> None:
        """Final answer is known."""

    async def fail(self, message: str) -> None:
        """The invocation failed."""


class SilentProgress(ProgressReporter):
    """Batch strategy: keeps the artifacts and the answer for the caller."""

    def __init__(self) -> None:
        self.attachments: list[Attachment] = []
        self.answer: str | None = None
        self.error: str | None = None

    async def deliver(self, attachments: list[Attachment]) -> None:
        self.attachments.extend(attachments)

    async def finish(self, answer: str) -> None:
        self.answer = answer

    async def fail(self, message: str) -> None:
        self.error = message


class LiveProgress(ProgressReporter):
    """Interactive strategy: throttled in-place edits on a ProgressSurface.

    Surface failures are logged and swallowed; a broken display must never
    abort the conversation loop.
    """

    def __init__(self, surface: ProgressSurface, throttler: ProgressThrottler | None = None) -> None:
        self._surface = surface
        self._throttler = throttler or ProgressThrottler()
        self._shown = ""

    async def update(self, text: str, force: bool = False) -> None:
        if not self._throttler.should_push(text, force):
            return
        self._throttler.mark_pushed(text)
        await self._push(text or THINKING_PLACEHOLDER)

    async def reasoning(self, text: str) -> None:
        await self.update(format_reasoning(text))

    async def tool_status(self, response_text: str, status: str) -> None:
        await self.update(f"{response_text}\n\n{status}" if response_text else status, force=True)

    async def deliver(self, attachments: list[Attachment]) -> None:
        if attachments:
            await self._push(self._shown or THINKING_PLACEHOLDER, attachments)

    async def finish(self, answer: str) -> None:
        await self.update(answer or NO_ANSWER_TEXT, force=True)

    async def fail(self, message: str) -> None:
        await self.update(f"❌ An error occurred.\n```\n{message}\n```", force=True)

    async def _push(self, text: str, attachments: list[Attachment] | None = None) -> None:
        try:
            await self._surface.push(text, attachments)
            self._shown = text
        except Exception:
            logger.warning("Progress update failed", exc_info=True)
