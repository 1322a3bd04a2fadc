"""REST API for quarry.

Endpoints:
  POST /chat            - Ask a question, get the final answer (no streaming)
  POST /reports/daily   - Generate and post the daily report now
  POST /schema/refresh  - Drop the cached schema description
  GET  /health          - Health check (DB connectivity)
"""

from __future__ import annotations

import base64
import logging
from typing import Any

from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route

from quarry.api.models import Conversation
from quarry.api.progress import NO_ANSWER_TEXT, SilentProgress
from quarry.api.runner import ConversationLoop
from quarry.api.stream import ModelStreamError
from quarry.config import Settings
from quarry.handlers.daily_report import ReportNotConfigured
from quarry.prompts import build_system_prompt
from quarry.storage.database import Database
from quarry.storage.schema_cache import SchemaCache

logger = logging.getLogger(__name__)

_ROLES = ("user", "assistant")


def _parse_history(raw: Any) -> list[tuple[str, str]]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ValueError("history must be a list of {role, text} objects")
    history = []
    for item in raw:
        if not isinstance(item, dict) or item.get("role") not in _ROLES or not isinstance(item.get("text"), str):
            raise ValueError("history entries need role (user|assistant) and text")
        history.append((item["role"], item["text"]))
    return history


def create_app(
    loop: ConversationLoop,
    schema_cache: SchemaCache,
    database: Database,
    settings: Settings,
    daily_report: Any | None = None,
    lifespan: Any | None = None,
) -> Starlette:
    """Create the Starlette ASGI app with all routes."""

    async def chat(request: Request) -> JSONResponse:
        """POST /chat - Run one conversation and return the final answer."""
        try:
            body = await request.json()
        except Exception:
            return JSONResponse({"error": "Invalid JSON body"}, status_code=400)
        if not isinstance(body, dict):
            return JSONResponse({"error": "Invalid JSON body"}, status_code=400)

        message = body.get("message")
        if not isinstance(message, str) or not message.strip():
            return JSONResponse({"error": "Missing required field: message"}, status_code=400)
        try:
            history = _parse_history(body.get("history"))
        except ValueError as e:
            return JSONResponse({"error": str(e)}, status_code=400)

        try:
            schema = await schema_cache.get_or_populate()
            system_text = build_system_prompt(schema, settings.timezone, settings.max_iterations)
            progress = SilentProgress()
            result = await loop.run(Conversation.seeded(history, message), system_text, progress)
        except ModelStreamError as e:
            return JSONResponse({"error": str(e)}, status_code=502)
        except Exception as e:
            logger.error("Chat error: %s", e)
            return JSONResponse({"error": str(e)}, status_code=500)

        return JSONResponse({
            "response": result.answer or NO_ANSWER_TEXT,
            "iterations": result.iterations,
            "hit_ceiling": result.hit_ceiling,
            "attachments": [
                {
                    "filename": a.filename,
                    "caption": a.caption,
                    "data": base64.b64encode(a.data).decode("ascii"),
                }
                for a in progress.attachments
            ],
        })

    async def daily(request: Request) -> JSONResponse:
        """POST /reports/daily - Post the daily report to a chat."""
        if daily_report is None:
            return JSONResponse({"error": "Daily report not configured"}, status_code=503)
        chat_id = None
        if await request.body():
            try:
                body = await request.json()
                chat_id = body.get("chat_id") if isinstance(body, dict) else None
            except Exception:
                return JSONResponse({"error": "Invalid JSON body"}, status_code=400)
        if chat_id is None and settings.report_chat_id is None:
            return JSONResponse({"error": "Missing chat_id and no report chat configured"}, status_code=400)

        try:
            report = await daily_report.post(chat_id)
        except ReportNotConfigured as e:
            return JSONResponse({"error": str(e)}, status_code=503)
        except ModelStreamError as e:
            return JSONResponse({"error": str(e)}, status_code=502)
        except Exception as e:
            logger.error("Daily report error: %s", e)
            return JSONResponse({"error": str(e)}, status_code=500)
        return JSONResponse({
            "status": "posted",
            "charts": len(report.attachments),
            "hit_ceiling": report.hit_ceiling,
        })

    async def refresh_schema(request: Request) -> JSONResponse:
        """POST /schema/refresh - Invalidate the schema cache."""
        schema_cache.invalidate()
        return JSONResponse({"status": "invalidated"})

    async def health(request: Request) -> JSONResponse:
        """GET /health - Health check."""
        try:
            await database.connect()
            return JSONResponse({"status": "healthy"})
        except Exception as e:
            return JSONResponse({"status": "unhealthy", "error": str(e)}, status_code=503)

    routes = [
        Route("/chat", chat, methods=["POST"]),
        Route("/reports/daily", daily, methods=["POST"]),
        Route("/schema/refresh", refresh_schema, methods=["POST"]),
        Route("/health", health),
    ]

    return Starlette(routes=routes, lifespan=lifespan)
