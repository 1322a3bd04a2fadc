"""Tool dispatcher for direct Anthropic API integration.

Handlers are async callables registered by exact name. Each one takes the
tool input as keyword arguments and returns either a ToolOutcome or a plain
result dict; dicts carrying ``"success": False`` count as failures.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Any

from quarry.api.models import ToolOutcome, ToolUseBlock

logger = logging.getLogger(__name__)

ToolHandler = Callable[..., Awaitable[Any]]
StatusFormatter = Callable[[dict[str, Any]], str]


class ToolDispatcher:
    """Registers tool handlers and dispatches tool calls from the API.

    The set of tools is fixed once the dispatcher is built. The dispatcher
    performs no I/O of its own: side effects belong to the handlers.
    """

    def __init__(self) -> None:
        self._handlers: dict[str, ToolHandler] = {}
        self._schemas: dict[str, dict[str, Any]] = {}
        self._status: dict[str, StatusFormatter] = {}

    def register(
        self,
        name: str,
        handler: ToolHandler,
        schema: dict[str, Any],
        status: StatusFormatter | None = None,
    ) -> None:
        """Register a tool handler with its JSON schema and progress status line."""
        self._handlers[name] = handler
        self._schemas[name] = schema
        if status is not None:
            self._status[name] = status

    @property
    def names(self) -> list[str]:
        return list(self._handlers)

    async def dispatch(self, call: ToolUseBlock) -> ToolOutcome:
        """Run one tool call and normalize whatever happens into a ToolOutcome."""
        handler = self._handlers.get(call.name)
        if not handler:
            logger.error("Model requested unregistered tool %r", call.name)
            return ToolOutcome.failure(f"Unknown tool: {call.name}")
        try:
            result = await handler(**call.input)
        except Exception as e:
            logger.exception("Tool dispatch error for %s", call.name)
            return ToolOutcome.failure(f"Tool error: {e}")
        return _normalize(result)

    def status_line(self, call: ToolUseBlock) -> str:
        """Human-readable line shown while the tool runs."""
        formatter = self._status.get(call.name)
        if formatter is None:
            return f"\U0001f527 **Running** `{call.name}`"
        try:
            return formatter(call.input)
        except Exception:
            logger.warning("Status formatter failed for %s", call.name)
            return f"\U0001f527 **Running** `{call.name}`"

    def tool_definitions(self) -> list[dict[str, Any]]:
        """Return all tool definitions in Anthropic API format."""
        return [
            {
                "name": name,
                "description": schema.get("description", ""),
                "input_schema": {k: v for k, v in schema.items() if k != "description"},
            }
            for name, schema in self._schemas.items()
        ]


def _normalize(result: Any) -> ToolOutcome:
    if isinstance(result, ToolOutcome):
        return result
    if isinstance(result, dict):
        if result.get("success") is False:
            return ToolOutcome.failure(str(result.get("error") or "Tool reported failure"))
        return ToolOutcome.success(result)
    return ToolOutcome.success({"success": True, "result": result})
