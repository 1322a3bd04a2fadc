"""Anthropic streaming provider and chunk decoder.

The provider yields raw SSE event dicts from the Messages API. The decoder
maps each one to at most one semantic event; everything it does not
recognize (pings, message envelopes, signature deltas, block stops, future
event types) is ignored.
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Any, Protocol, Union

import httpx

from quarry.config import Settings

logger = logging.getLogger(__name__)

# Anthropic API version header
_API_VERSION = "2023-06-01"


class ModelStreamError(RuntimeError):
    """The model stream failed to open or broke mid-turn."""


@dataclass(frozen=True)
class ReasoningDelta:
    text: str


@dataclass(frozen=True)
class TextDelta:
    text: str


@dataclass(frozen=True)
class ToolOpen:
    id: str
    name: str


@dataclass(frozen=True)
class ToolArgDelta:
    """Argument fragment for whichever tool call was opened last."""

    text: str


StreamEvent = Union[ReasoningDelta, TextDelta, ToolOpen, ToolArgDelta]


def decode_event(data: dict[str, Any]) -> StreamEvent | None:
    """Decode one Anthropic SSE event dict into a StreamEvent, or None."""
    event_type = data.get("type")

    if event_type == "content_block_start":
        block = data.get("content_block") or {}
        if block.get("type") == "tool_use":
            return ToolOpen(id=block.get("id", ""), name=block.get("name", ""))
        return None

    if event_type == "content_block_delta":
        delta = data.get("delta") or {}
        delta_type = delta.get("type")
        if delta_type == "text_delta":
            return TextDelta(delta.get("text", ""))
        if delta_type == "thinking_delta":
            return ReasoningDelta(delta.get("thinking", ""))
        if delta_type == "input_json_delta":
            return ToolArgDelta(delta.get("partial_json", ""))
        return None

    return None


class ModelStream(Protocol):
    def stream_turn(
        self,
        history: list[dict[str, Any]],
        system_text: str,
        tool_catalog: list[dict[str, Any]],
    ) -> AsyncIterator[dict[str, Any]]: ...


def build_headers(settings: Settings) -> dict[str, str]:
    """Build auth headers for Anthropic API calls."""
    headers: dict[str, str] = {
        "anthropic-version": _API_VERSION,
        "content-type": "application/json",
    }
    if settings.anthropic_auth_token:
        headers["authorization"] = f"Bearer {settings.anthropic_auth_token}"
    elif settings.anthropic_api_key:
        headers["x-api-key"] = settings.anthropic_api_key
    else:
        logger.warning(
            "Neither ANTHROPIC_API_KEY nor ANTHROPIC_AUTH_TOKEN is set -- "
            "API calls will fail"
        )
    return headers


class AnthropicStream:
    """Streams one model round-trip from the Anthropic Messages API."""

    def __init__(self, settings: Settings, http: httpx.AsyncClient | None = None) -> None:
        self._settings = settings
        self._http = http

    async def start(self) -> None:
        """Initialize the httpx client with auth and timeout settings."""
        if self._http is not None:
            return
        settings = self._settings
        timeout = httpx.Timeout(
            connect=settings.api_timeout_connect,
            read=settings.api_timeout_read,
            write=10.0,
            pool=10.0,
        )
        limits = httpx.Limits(max_connections=10, max_keepalive_connections=5)
        self._http = httpx.AsyncClient(
            base_url=settings.api_base_url,
            headers=build_headers(settings),
            timeout=timeout,
            limits=limits,
        )
        logger.info("Anthropic client initialized (model: %s)", settings.model)

    async def close(self) -> None:
        if self._http:
            await self._http.aclose()
            self._http = None

    def build_payload(
        self,
        history: list[dict[str, Any]],
        system_text: str,
        tool_catalog: list[dict[str, Any]],
    ) -> dict[str, Any]:
        """Build the Messages API request body.

        Extended thinking is only requested while the history holds no
        tool_use/tool_result blocks, since replaying tool turns without the
        signed thinking blocks is rejected by the API.
        """
        settings = self._settings
        payload: dict[str, Any] = {
            "model": settings.model,
            "max_tokens": settings.max_tokens,
            "temperature": settings.temperature,
            "system": [{"type": "text", "text": system_text}],
            "messages": history,
            "stream": True,
        }
        if tool_catalog:
            payload["tools"] = tool_catalog
        if settings.thinking_budget and not _has_tool_blocks(history):
            payload["thinking"] = {"type": "enabled", "budget_tokens": settings.thinking_budget}
        return payload

    async def stream_turn(
        self,
        history: list[dict[str, Any]],
        system_text: str,
        tool_catalog: list[dict[str, Any]],
    ) -> AsyncIterator[dict[str, Any]]:
        """Yield raw SSE event dicts for one round-trip.

        Raises ModelStreamError on HTTP errors, in-stream error events and
        broken transports. Only data: lines are parsed.
        """
        if not self._http:
            raise RuntimeError("httpx client not initialized -- call start() first")

        payload = self.build_payload(history, system_text, tool_catalog)
        usage: dict[str, int] = {}
        try:
            async with self._http.stream("POST", "/v1/messages", json=payload) as response:
                if response.status_code != 200:
                    error_body = await response.aread()
                    raise ModelStreamError(
                        f"Anthropic API error ({response.status_code}): {error_body.decode()[:500]}"
                    )

                async for line in response.aiter_lines():
                    if not line.startswith("data: "):
                        continue
                    try:
                        data = json.loads(line[6:])
                    except json.JSONDecodeError as e:
                        raise ModelStreamError(f"Malformed stream event: {line[:200]}") from e
                    event_type = data.get("type")
                    if event_type == "error":
                        error = data.get("error") or {}
                        raise ModelStreamError(
                            f"{error.get('type', 'unknown')}: {error.get('message', '')}"
                        )
                    if event_type == "message_start":
                        usage.update((data.get("message") or {}).get("usage") or {})
                    elif event_type == "message_delta":
                        usage.update(data.get("usage") or {})
                    yield data
        except httpx.HTTPError as e:
            raise ModelStreamError(f"HTTP error: {e}") from e

        logger.debug(
            "Round-trip usage: %s in / %s out",
            usage.get("input_tokens", 0),
            usage.get("output_tokens", 0),
        )


def _has_tool_blocks(history: list[dict[str, Any]]) -> bool:
    for message in history:
        content = message.get("content")
        if isinstance(content, list) and any(
            block.get("type") in ("tool_use", "tool_result") for block in content
        ):
            return True
    return False
