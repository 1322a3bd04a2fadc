"""Per-turn tool call accumulation.

The stream never addresses argument fragments by call id: a fragment
belongs to whichever tool call was opened most recently. Calls are kept in
open order and finalized once, at the end of the round-trip.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field

from quarry.api.models import ToolUseBlock

logger = logging.getLogger(__name__)


@dataclass
class PendingToolCall:
    id: str
    name: str
    buffer: list[str] = field(default_factory=list)

    @property
    def raw_arguments(self) -> str:
        return "".join(self.buffer)


def parse_arguments(raw: str) -> dict:
    """Parse accumulated argument JSON, falling back to {} when unusable."""
    if not raw.strip():
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Malformed tool arguments, using empty input: %.200s", raw)
        return {}
    if not isinstance(parsed, dict):
        logger.warning("Tool arguments are not an object, using empty input: %.200s", raw)
        return {}
    return parsed


class ToolCallAccumulator:
    """Collects tool calls for one round-trip."""

    def __init__(self) -> None:
        self._pending: list[PendingToolCall] = []
        self._current = -1

    def open(self, tool_id: str, name: str) -> None:
        self._pending.append(PendingToolCall(id=tool_id, name=name))
        self._current = len(self._pending) - 1

    def append_arg(self, fragment: str) -> None:
        if self._current < 0:
            logger.debug("Dropping argument fragment with no open tool call")
            return
        self._pending[self._current].buffer.append(fragment)

    @property
    def pending(self) -> list[PendingToolCall]:
        return list(self._pending)

    def __len__(self) -> int:
        return len(self._pending)

    def finalize_all(self) -> list[ToolUseBlock]:
        """Turn every pending call into a ToolUseBlock and clear the pending set.

        Calls are never dropped: an empty or malformed buffer yields an empty
        input. A second call returns [].
        """
        blocks = [
            ToolUseBlock(id=call.id, name=call.name, input=parse_arguments(call.raw_arguments))
            for call in self._pending
        ]
        self._pending = []
        self._current = -1
        return blocks
