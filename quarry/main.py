"""quarry entry point.

Initializes all components and starts the server:
  Settings -> Database -> SchemaCache -> Tools -> Model stream -> Loop
  -> Telegram bot / report scheduler -> App -> Uvicorn

Uses Starlette lifespan so the bot's polling task and the scheduler run on
the same event loop as uvicorn.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import uvicorn
from starlette.applications import Starlette

from quarry.api.chart_tools import register_chart_tools
from quarry.api.r2_tools import register_r2_tools
from quarry.api.runner import ConversationLoop
from quarry.api.sql_tools import register_sql_tools
from quarry.api.stream import AnthropicStream
from quarry.api.tools import ToolDispatcher
from quarry.config import Settings
from quarry.handlers.daily_report import DailyReport
from quarry.storage.database import Database
from quarry.storage.schema_cache import SchemaCache

logger = logging.getLogger(__name__)


async def create_components(settings: Settings, start_bot: bool = True) -> dict:
    """Initialize all components in dependency order.

    Returns dict with all components for lifespan storage. With
    start_bot=False the bot is created (so reports can be posted) but
    neither polling nor the report scheduler is started.
    """
    database = Database(settings)
    await database.connect()

    schema_cache = SchemaCache(database.load_schema, ttl=settings.schema_cache_ttl)

    dispatcher = ToolDispatcher()
    register_sql_tools(dispatcher, database)
    register_r2_tools(dispatcher, settings)
    register_chart_tools(dispatcher)

    stream = AnthropicStream(settings)
    await stream.start()

    loop = ConversationLoop(stream, dispatcher, settings)

    bot = None
    bot_task = None
    if settings.telegram_bot_token:
        from quarry.telegram_bot import QuarryTelegramBot

        bot = QuarryTelegramBot(settings, loop, schema_cache)
        if start_bot:
            bot_task = asyncio.create_task(bot.start(), name="telegram-bot")

    daily_report = DailyReport(loop, schema_cache, settings, bot=bot)

    report_scheduler = None
    if start_bot and bot is not None and settings.report_chat_id is not None:
        from quarry.handlers.report_scheduler import ReportScheduler

        report_scheduler = ReportScheduler(daily_report, settings)
        await report_scheduler.start()

    return {
        "database": database,
        "schema_cache": schema_cache,
        "dispatcher": dispatcher,
        "stream": stream,
        "loop": loop,
        "bot": bot,
        "bot_task": bot_task,
        "daily_report": daily_report,
        "report_scheduler": report_scheduler,
    }


async def shutdown_components(components: dict) -> None:
    """Graceful shutdown in reverse order."""
    logger.info("Shutting down quarry...")

    report_scheduler = components.get("report_scheduler")
    if report_scheduler:
        await report_scheduler.stop()

    bot_task = components.get("bot_task")
    if bot_task:
        bot_task.cancel()
        try:
            await bot_task
        except asyncio.CancelledError:
            pass

    bot = components.get("bot")
    if bot:
        await bot.close()

    stream = components.get("stream")
    if stream:
        await stream.close()

    database = components.get("database")
    if database:
        await database.disconnect()

    logger.info("quarry shutdown complete.")


def build_app(settings: Settings) -> Starlette:
    """Build the Starlette app; components live for the lifespan."""
    components: dict = {}

    @asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncIterator[None]:
        components.update(await create_components(settings))
        app.state.components = components
        logger.info(
            "quarry started: model=%s, max_iterations=%d, tools=%s",
            settings.model,
            settings.max_iterations,
            ", ".join(components["dispatcher"].names),
        )
        yield
        await shutdown_components(components)

    from quarry.api.rest import create_app

    return create_app(
        loop=_LazyProxy(components, "loop"),
        schema_cache=_LazyProxy(components, "schema_cache"),
        database=_LazyProxy(components, "database"),
        settings=settings,
        daily_report=_LazyProxy(components, "daily_report"),
        lifespan=lifespan,
    )


class _LazyProxy:
    """Stands in for components[key] until the lifespan has created it."""

    def __init__(self, components: dict, key: str) -> None:
        self._components = components
        self._key = key

    def __getattr__(self, name: str):
        component = self._components.get(self._key)
        if component is None:
            raise RuntimeError(f"{self._key} is not available before startup")
        return getattr(component, name)


def main() -> None:
    """Entry point: parse settings, build app, run server."""
    settings = Settings()

    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )

    logger.info("Starting quarry")
    logger.info("Model: %s", settings.model)
    logger.info("Database: %s:%s/%s", settings.db_host, settings.db_port, settings.db_name)

    if not settings.anthropic_api_key and not settings.anthropic_auth_token:
        logger.warning(
            "Neither ANTHROPIC_API_KEY nor ANTHROPIC_AUTH_TOKEN is set, "
            "every conversation will fail"
        )
    if not settings.telegram_bot_token:
        logger.warning("TELEGRAM_BOT_TOKEN not set, running REST API only")
    if not settings.r2_account_id:
        logger.warning("R2_ACCOUNT_ID not set, upload_to_r2 will fail")

    app = build_app(settings)

    uvicorn.run(
        app,
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level,
    )


if __name__ == "__main__":
    main()
