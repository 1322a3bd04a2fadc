"""Conversation loop -- runs the streaming tool-use loop for one invocation.

Each iteration streams one model round-trip, reconstructs the assistant
turn from decoded events, executes the requested tools sequentially in the
order they were opened, and appends the assistant turn plus a user turn of
tool results before the next round-trip. The loop ends when a round-trip
requests no tools, or when the iteration ceiling is reached.

The same loop serves the interactive bot and the batch report; they differ
only in the ProgressReporter and the seed conversation they pass in.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import StrEnum

from quarry.api.accumulator import ToolCallAccumulator
from quarry.api.models import (
    ContentBlock,
    Conversation,
    ReasoningBlock,
    TextBlock,
    ToolResultBlock,
    Turn,
)
from quarry.api.progress import ProgressReporter
from quarry.api.stream import (
    ModelStream,
    ReasoningDelta,
    TextDelta,
    ToolArgDelta,
    ToolOpen,
    decode_event,
)
from quarry.api.tools import ToolDispatcher
from quarry.config import Settings

logger = logging.getLogger(__name__)


class LoopState(StrEnum):
    STREAMING = "streaming"
    DISPATCHING = "dispatching"
    DONE = "done"
    FAILED = "failed"


@dataclass
class RoundTrip:
    """What one streamed model response produced."""

    text: str
    reasoning: str
    calls: ToolCallAccumulator


@dataclass
class LoopResult:
    answer: str
    state: LoopState
    iterations: int
    round_trips: int
    hit_ceiling: bool
    conversation: Conversation
    reasoning: str = ""


class ConversationLoop:
    """Runs one conversation to completion against a model stream and a dispatcher."""

    def __init__(
        self,
        stream: ModelStream,
        dispatcher: ToolDispatcher,
        settings: Settings,
    ) -> None:
        self._stream = stream
        self._dispatcher = dispatcher
        self._max_iterations = settings.max_iterations

    async def run(
        self,
        conversation: Conversation,
        system_text: str,
        progress: ProgressReporter | None = None,
    ) -> LoopResult:
        """Drive the loop until a final answer or the ceiling.

        Model stream errors are reported to ``progress`` once and re-raised;
        tool errors never escape, they reach the model as tool results.
        """
        progress = progress or ProgressReporter()
        tools = self._dispatcher.tool_definitions()
        iterations = 0
        round_trips = 0
        last = RoundTrip(text="", reasoning="", calls=ToolCallAccumulator())

        try:
            while iterations < self._max_iterations:
                logger.debug("Loop %s (iteration %d)", LoopState.STREAMING, iterations)
                last = await self._round_trip(conversation, system_text, tools, progress)
                round_trips += 1

                if not last.calls:
                    logger.debug("Loop %s after %d round-trip(s)", LoopState.DONE, round_trips)
                    await progress.finish(last.text)
                    return LoopResult(
                        answer=last.text,
                        state=LoopState.DONE,
                        iterations=iterations,
                        round_trips=round_trips,
                        hit_ceiling=False,
                        conversation=conversation,
                        reasoning=last.reasoning,
                    )

                logger.debug("Loop %s %d tool call(s)", LoopState.DISPATCHING, len(last.calls))
                await self._dispatch(conversation, last, progress)
                iterations += 1
        except Exception as e:
            logger.error("Conversation loop %s: %s", LoopState.FAILED, e)
            await progress.fail(str(e))
            raise

        logger.warning("Conversation loop reached max_iterations=%d", self._max_iterations)
        await progress.finish(last.text)
        return LoopResult(
            answer=last.text,
            state=LoopState.DONE,
            iterations=iterations,
            round_trips=round_trips,
            hit_ceiling=True,
            conversation=conversation,
            reasoning=last.reasoning,
        )

    async def _round_trip(
        self,
        conversation: Conversation,
        system_text: str,
        tools: list[dict],
        progress: ProgressReporter,
    ) -> RoundTrip:
        text_parts: list[str] = []
        reasoning_parts: list[str] = []
        calls = ToolCallAccumulator()

        async for raw in self._stream.stream_turn(conversation.to_api(), system_text, tools):
            event = decode_event(raw)
            if isinstance(event, TextDelta):
                text_parts.append(event.text)
                await progress.update("".join(text_parts))
            elif isinstance(event, ReasoningDelta):
                reasoning_parts.append(event.text)
                await progress.reasoning("".join(reasoning_parts))
            elif isinstance(event, ToolOpen):
                calls.open(event.id, event.name)
            elif isinstance(event, ToolArgDelta):
                calls.append_arg(event.text)

        return RoundTrip(text="".join(text_parts), reasoning="".join(reasoning_parts), calls=calls)

    async def _dispatch(
        self,
        conversation: Conversation,
        round_trip: RoundTrip,
        progress: ProgressReporter,
    ) -> None:
        tool_uses = round_trip.calls.finalize_all()

        results: list[ToolResultBlock] = []
        for call in tool_uses:
            await progress.tool_status(round_trip.text, self._dispatcher.status_line(call))
            outcome = await self._dispatcher.dispatch(call)
            if outcome.attachments:
                await progress.deliver(outcome.attachments)
            if not outcome.ok:
                logger.info("Tool %s failed: %s", call.name, outcome.error_message)
            results.append(outcome.to_block(call.id))

        if round_trip.text:
            await progress.update(round_trip.text, force=True)

        assistant_blocks: list[ContentBlock] = []
        if round_trip.reasoning:
            assistant_blocks.append(ReasoningBlock(round_trip.reasoning))
        if round_trip.text:
            assistant_blocks.append(TextBlock(round_trip.text))
        assistant_blocks.extend(tool_uses)

        conversation.append(Turn(role="assistant", blocks=assistant_blocks))
        conversation.append(Turn(role="user", blocks=list(results)))
