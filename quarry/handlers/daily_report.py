"""Daily report -- one non-interactive run of the conversation loop.

The loop runs with SilentProgress: nothing is shown while the model works.
Once the answer is final, the placeholder message is removed and the report
text is posted in chunks, followed by any charts the model drew.

Run once by hand with ``python -m quarry.handlers.daily_report``.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from quarry.api.models import Attachment, Conversation
from quarry.api.progress import NO_ANSWER_TEXT, SilentProgress
from quarry.api.runner import ConversationLoop
from quarry.config import Settings
from quarry.prompts import build_daily_report_prompt, build_system_prompt
from quarry.storage.schema_cache import SchemaCache

if TYPE_CHECKING:
    from quarry.telegram_bot import QuarryTelegramBot

logger = logging.getLogger(__name__)


class ReportNotConfigured(RuntimeError):
    """No bot or no destination chat for the report."""


PLACEHOLDER_TEXT = "\U0001f4ca Generating the daily report..."


@dataclass
class ReportResult:
    answer: str
    attachments: list[Attachment] = field(default_factory=list)
    hit_ceiling: bool = False


class DailyReport:
    """Generates the daily report and, when a bot is given, posts it."""

    def __init__(
        self,
        loop: ConversationLoop,
        schema_cache: SchemaCache,
        settings: Settings,
        bot: QuarryTelegramBot | None = None,
    ) -> None:
        self._loop = loop
        self._schema_cache = schema_cache
        self._settings = settings
        self._bot = bot

    async def generate(self) -> ReportResult:
        """Run the report conversation without posting anything."""
        schema = await self._schema_cache.get_or_populate()
        system_text = build_system_prompt(schema, self._settings.timezone, self._settings.max_iterations)
        conversation = Conversation.seeded([], build_daily_report_prompt(self._settings.timezone))

        progress = SilentProgress()
        result = await self._loop.run(conversation, system_text, progress)
        logger.info(
            "Daily report generated (%d round-trip(s), %d chart(s))",
            result.round_trips,
            len(progress.attachments),
        )
        return ReportResult(
            answer=result.answer or NO_ANSWER_TEXT,
            attachments=progress.attachments,
            hit_ceiling=result.hit_ceiling,
        )

    async def post(self, chat_id: int | None = None) -> ReportResult:
        """Generate the report and post it to chat_id (default: report_chat_id)."""
        chat_id = chat_id if chat_id is not None else self._settings.report_chat_id
        if self._bot is None or chat_id is None:
            raise ReportNotConfigured("Daily report needs a Telegram bot and a report chat id")

        placeholder = await self._bot.send(chat_id, PLACEHOLDER_TEXT)
        try:
            report = await self.generate()
        except Exception as e:
            logger.exception("Daily report failed")
            await self._bot.send(chat_id, f"❌ Daily report failed.\n```\n{e}\n```")
            raise
        finally:
            if isinstance(placeholder, dict) and "message_id" in placeholder:
                await self._bot.delete(chat_id, placeholder["message_id"])

        await self._bot.send_long(chat_id, report.answer)
        for attachment in report.attachments:
            await self._bot.send_photo(chat_id, attachment)
        return report


async def _run_once() -> None:
    from quarry.main import create_components, shutdown_components

    components = await create_components(Settings(), start_bot=False)
    try:
        await components["daily_report"].post()
    finally:
        await shutdown_components(components)


def main() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )
    asyncio.run(_run_once())


if __name__ == "__main__":
    main()
