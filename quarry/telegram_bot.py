"""Telegram transport for the quarry assistant.

Long-polls the Telegram Bot API and runs one conversation loop per incoming
message, each as its own asyncio task. The reply is a single message that is
posted once and then edited in place as the model streams (see
TelegramSurface); charts arrive as separate photos.

In groups the bot only answers when mentioned (@username) or when someone
replies to one of its messages. In private chats it answers everything.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections import OrderedDict, deque
from dataclasses import dataclass
from typing import Any

import httpx

from quarry.api.models import Attachment, Conversation, Role
from quarry.api.progress import NO_ANSWER_TEXT, LiveProgress, ProgressThrottler
from quarry.api.runner import ConversationLoop
from quarry.config import Settings
from quarry.prompts import build_system_prompt
from quarry.storage.schema_cache import SchemaCache

logger = logging.getLogger(__name__)

# Telegram Bot API base
TG_API = "https://api.telegram.org/bot{token}/{method}"

# Max photo caption length
TG_MAX_CAPTION = 1024

REACTION_WORKING = "\U0001f440"
REACTION_DONE = "\U0001f44c"
REACTION_FAILED = "\U0001f44e"

GREETING = "Hi! Ask me anything about the data. \U0001f4ca"


def split_message(text: str, limit: int) -> list[str]:
    """Split text on newlines into chunks no longer than limit.

    Single lines longer than limit are hard-wrapped.
    """
    if len(text) <= limit:
        return [text]

    chunks: list[str] = []
    current = ""
    for line in text.split("\n"):
        while len(line) > limit:
            if current:
                chunks.append(current)
                current = ""
            chunks.append(line[:limit])
            line = line[limit:]
        if len(current) + len(line) + 1 > limit:
            if current:
                chunks.append(current)
            current = line
        else:
            current = f"{current}\n{line}" if current else line
    if current:
        chunks.append(current)
    return chunks


@dataclass
class HistoryEntry:
    """One remembered message. For bot answers, user_id is the asker."""

    message_id: int
    user_id: int | None
    text: str
    from_bot: bool = False


class ChatHistory:
    """Recent text messages per chat, used to rebuild thread context.

    The Bot API cannot fetch past messages, so the bot remembers the last
    ``window`` messages it has seen in each of the ``max_chats`` most
    recently active chats.
    """

    def __init__(self, window: int = 10, max_chats: int = 1000) -> None:
        self._window = window
        self._max_chats = max_chats
        self._chats: OrderedDict[int, deque[HistoryEntry]] = OrderedDict()

    def record(self, chat_id: int, entry: HistoryEntry) -> None:
        entries = self._chats.get(chat_id)
        if entries is None:
            entries = self._chats[chat_id] = deque(maxlen=self._window)
        self._chats.move_to_end(chat_id)
        entries.append(entry)
        while len(self._chats) > self._max_chats:
            self._chats.popitem(last=False)

    def seed(self, chat_id: int, user_id: int | None, exclude_message_id: int) -> list[tuple[Role, str]]:
        """Prior turns for user_id: their messages as user, the bot's answers to them as assistant."""
        turns: list[tuple[Role, str]] = []
        for entry in self._chats.get(chat_id, ()):
            if entry.message_id == exclude_message_id or entry.user_id != user_id:
                continue
            turns.append(("assistant" if entry.from_bot else "user", entry.text))
        return turns


class TelegramSurface:
    """Progress surface backed by one Telegram message.

    The first push replies to the user's message, later pushes edit it.
    Text beyond the platform limit is not shown while streaming;
    send_remainder() posts it as follow-up messages once the answer is final.
    """

    def __init__(self, bot: QuarryTelegramBot, chat_id: int, reply_to: int | None = None) -> None:
        self._bot = bot
        self.chat_id = chat_id
        self.reply_to = reply_to
        self.message_id: int | None = None
        self._shown = ""

    async def push(self, text: str, attachments: list[Attachment] | None = None) -> None:
        for attachment in attachments or []:
            await self._bot.send_photo(self.chat_id, attachment, reply_to=self.reply_to)

        first = split_message(text, self._bot.message_limit)[0]
        if self.message_id is None:
            result = await self._bot.send(self.chat_id, first, reply_to=self.reply_to)
            if isinstance(result, dict) and "message_id" in result:
                self.message_id = result["message_id"]
        elif first != self._shown:
            await self._bot.edit(self.chat_id, self.message_id, first)
        self._shown = first

    async def send_remainder(self, text: str) -> None:
        for chunk in split_message(text, self._bot.message_limit)[1:]:
            await self._bot.send(self.chat_id, chunk)
            await asyncio.sleep(0.3)  # Rate limit


class QuarryTelegramBot:
    """Telegram bot that answers data questions through the conversation loop."""

    def __init__(
        self,
        settings: Settings,
        loop: ConversationLoop,
        schema_cache: SchemaCache,
        http: httpx.AsyncClient | None = None,
    ) -> None:
        self._settings = settings
        self._loop = loop
        self._schema_cache = schema_cache
        self.bot_token = settings.telegram_bot_token
        self.allowed_users = settings.allowed_user_ids
        self.message_limit = settings.message_limit
        self.history = ChatHistory(settings.history_window, settings.history_max_chats)
        self.username = ""
        self.bot_id: int | None = None
        self._offset = 0
        self._tasks: set[asyncio.Task] = set()
        self._http = http or httpx.AsyncClient(
            timeout=httpx.Timeout(connect=10, read=60, write=30, pool=10)
        )

    async def start(self) -> None:
        """Identify the bot, then poll for updates until cancelled."""
        me = await self._tg("getMe")
        self.username = me.get("username", "")
        self.bot_id = me.get("id")
        logger.info("Bot started: @%s (%s)", self.username, self.bot_id)

        while True:
            try:
                updates = await self._tg(
                    "getUpdates",
                    params={"offset": self._offset, "timeout": 30},
                )
                for update in updates if isinstance(updates, list) else []:
                    self._offset = update["update_id"] + 1
                    self._spawn(self.handle_update(update))
            except httpx.ReadTimeout:
                continue  # Normal for long polling
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error("Polling error: %s", e)
                await asyncio.sleep(5)

    def _spawn(self, coro: Any) -> None:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def handle_update(self, update: dict[str, Any]) -> None:
        """Handle a single Telegram update."""
        message = update.get("message")
        if not message:
            return

        chat = message.get("chat", {})
        chat_id = chat.get("id")
        message_id = message.get("message_id")
        user = message.get("from", {})
        user_id = user.get("id")
        text = (message.get("text") or "").strip()

        if not text or user.get("is_bot"):
            return

        self.history.record(chat_id, HistoryEntry(message_id=message_id, user_id=user_id, text=text))

        addressed, question = self._extract_question(message, text, private=chat.get("type") == "private")
        if not addressed:
            return

        if self.allowed_users and user_id not in self.allowed_users:
            await self.send(chat_id, "⛔ Not authorized.", reply_to=message_id)
            return

        if not question:
            await self.send(chat_id, GREETING, reply_to=message_id)
            return

        await self.answer(chat_id, message_id, user_id, question, threaded="reply_to_message" in message)

    def _extract_question(self, message: dict[str, Any], text: str, private: bool) -> tuple[bool, str]:
        """Return (addressed_to_bot, text_without_mention)."""
        mention = f"@{self.username}" if self.username else ""
        mentioned = bool(mention) and mention.lower() in text.lower()
        if mentioned:
            start = text.lower().index(mention.lower())
            text = (text[:start] + text[start + len(mention):]).strip()
        reply = message.get("reply_to_message") or {}
        replied_to_bot = self.bot_id is not None and reply.get("from", {}).get("id") == self.bot_id
        return private or mentioned or replied_to_bot, text

    async def answer(
        self,
        chat_id: int,
        message_id: int,
        user_id: int | None,
        question: str,
        threaded: bool = False,
    ) -> None:
        """Run one interactive conversation and stream it into the chat."""
        await self.react(chat_id, message_id, REACTION_WORKING)

        history = self.history.seed(chat_id, user_id, exclude_message_id=message_id) if threaded else []
        conversation = Conversation.seeded(history, question)

        surface = TelegramSurface(self, chat_id, reply_to=message_id)
        progress = LiveProgress(
            surface,
            ProgressThrottler(self._settings.progress_interval, self._settings.progress_min_chars),
        )

        try:
            schema = await self._schema_cache.get_or_populate()
            system_text = build_system_prompt(schema, self._settings.timezone, self._settings.max_iterations)
        except Exception as e:
            logger.exception("Could not build system prompt")
            await progress.fail(str(e))
            await self.react(chat_id, message_id, REACTION_FAILED)
            return

        try:
            result = await self._loop.run(conversation, system_text, progress)
        except Exception:
            logger.exception("Conversation failed in chat %s", chat_id)
            await self.react(chat_id, message_id, REACTION_FAILED)
            return

        answer = result.answer or NO_ANSWER_TEXT
        await surface.send_remainder(answer)
        if surface.message_id is not None:
            self.history.record(
                chat_id, HistoryEntry(message_id=surface.message_id, user_id=user_id, text=answer, from_bot=True)
            )
        await self.react(chat_id, message_id, REACTION_DONE)

    # ------------------------------------------------------------------
    # Bot API calls
    # ------------------------------------------------------------------

    async def send(self, chat_id: int, text: str, reply_to: int | None = None) -> dict:
        """Send a message to Telegram."""
        params: dict[str, Any] = {"chat_id": chat_id, "text": text}
        if reply_to is not None:
            params["reply_parameters"] = {"message_id": reply_to, "allow_sending_without_reply": True}
        return await self._tg("sendMessage", params=params)

    async def send_long(self, chat_id: int, text: str) -> list[int]:
        """Send a long message, splitting if needed. Returns sent message ids."""
        ids: list[int] = []
        for chunk in split_message(text, self.message_limit):
            result = await self.send(chat_id, chunk)
            if isinstance(result, dict) and "message_id" in result:
                ids.append(result["message_id"])
            await asyncio.sleep(0.3)  # Rate limit
        return ids

    async def edit(self, chat_id: int, message_id: int, text: str) -> dict:
        # No parse_mode while streaming: partial markdown breaks entity parsing
        return await self._tg("editMessageText", params={
            "chat_id": chat_id,
            "message_id": message_id,
            "text": text,
        })

    async def delete(self, chat_id: int, message_id: int) -> dict:
        return await self._tg("deleteMessage", params={"chat_id": chat_id, "message_id": message_id})

    async def react(self, chat_id: int, message_id: int, emoji: str) -> dict:
        """Replace the bot's reaction on a message (best-effort)."""
        return await self._tg("setMessageReaction", params={
            "chat_id": chat_id,
            "message_id": message_id,
            "reaction": [{"type": "emoji", "emoji": emoji}],
        })

    async def send_photo(self, chat_id: int, attachment: Attachment, reply_to: int | None = None) -> dict:
        params: dict[str, Any] = {"chat_id": chat_id, "caption": attachment.caption[:TG_MAX_CAPTION]}
        if reply_to is not None:
            params["reply_parameters"] = json.dumps({"message_id": reply_to, "allow_sending_without_reply": True})
        return await self._tg(
            "sendPhoto",
            params=params,
            files={"photo": (attachment.filename, attachment.data, "image/png")},
        )

    async def _tg(
        self,
        method: str,
        params: dict[str, Any] | None = None,
        files: dict[str, Any] | None = None,
    ) -> Any:
        """Call the Telegram Bot API.

        API errors and transport failures are logged and return {}. Transport
        failures of getMe and getUpdates are raised to start() instead.
        """
        url = TG_API.format(token=self.bot_token, method=method)
        try:
            if files:
                response = await self._http.post(url, data=params, files=files)
            elif method == "getUpdates":
                response = await self._http.post(url, json=params or {}, timeout=60)
            else:
                response = await self._http.post(url, json=params or {})
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            if method in ("getMe", "getUpdates"):
                raise
            logger.warning("Telegram request failed (%s): %s", method, e)
            return {}
        if not data.get("ok"):
            logger.warning("Telegram API error (%s): %s", method, data.get("description", data))
            return {}
        return data.get("result", {})

    async def close(self) -> None:
        """Cancel in-flight conversations and close the HTTP client."""
        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        await self._http.aclose()
