"""Telegram bot channel.

Long-polls the Bot API with httpx and forwards text messages from allowed
users to the message handler. Replies longer than Telegram's limit are split
on line, then word, boundaries.
"""

import asyncio
from typing import Any, Optional

import httpx
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from shared.config import TelegramSettings
from shared.logging import bind_context, clear_context, get_logger
from shared.models import IncomingMessage
from orchestrator.agent import AgentProcessingError
from orchestrator.channels import MessageHandler

logger = get_logger(__name__)

CHANNEL = "telegram"
TELEGRAM_API_URL = "https://api.telegram.org"
MAX_MESSAGE_LENGTH = 4000

START_TEXT = "👋 Hi! I'm Nomad Agent. How can I help?"
HELP_TEXT = """🤖 *Nomad Agent*

Available commands:
/start - Start a conversation
/help - Show this help
/status - Show system status
/workitems - List work items (Azure DevOps)

Send any message to talk to the agent."""
STATUS_TEXT = "✅ System operational"
DENIED_TEXT = "❌ You are not allowed to use this bot."
FAILURE_TEXT = "❌ Sorry, something went wrong while processing your message."


class TelegramAPIError(Exception):
    """The Bot API rejected a call or could not be reached."""
    pass


def split_text(text: str, max_length: int = MAX_MESSAGE_LENGTH) -> list[str]:
    """
    Split text into chunks no longer than ``max_length``.

    Lines are kept whole where possible; a line that is too long on its own
    is split between words, and a single overlong word is cut.
    """
    if len(text) <= max_length:
        return [text]

    chunks: list[str] = []
    current = ""

    def push(piece: str, sep: str) -> None:
        nonlocal current
        if not current:
            current = piece
        elif len(current) + len(sep) + len(piece) <= max_length:
            current += sep + piece
        else:
            chunks.append(current)
            current = piece

    for line in text.split("\n"):
        if len(line) <= max_length:
            push(line, "\n")
            continue

        if current:
            chunks.append(current)
            current = ""
        for word in line.split():
            while len(word) > max_length:
                if current:
                    chunks.append(current)
                    current = ""
                chunks.append(word[:max_length])
                word = word[max_length:]
            if word:
                push(word, " ")

    if current:
        chunks.append(current)
    return chunks


class TelegramChannel:
    """Telegram long-polling bot."""

    def __init__(
        self,
        settings: TelegramSettings,
        handler: MessageHandler,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.settings = settings
        self.handler = handler
        self._allowed = set(settings.allowed_users)
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._offset = 0

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=f"{TELEGRAM_API_URL}/bot{self.settings.bot_token}",
                timeout=self.settings.poll_timeout_seconds + 10,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    def is_user_allowed(self, user_id: int) -> bool:
        """An empty allow-list admits everyone."""
        return not self._allowed or user_id in self._allowed

    async def _call(self, method: str, payload: dict[str, Any]) -> Any:
        try:
            response = await self._get_client().post(f"/{method}", json=payload)
        except httpx.HTTPError as e:
            raise TelegramAPIError(f"{method} failed: {e}") from e

        try:
            data = response.json()
        except ValueError as e:
            raise TelegramAPIError(f"{method} returned invalid JSON") from e

        if not data.get("ok"):
            raise TelegramAPIError(
                f"{method} failed (status {response.status_code}): {data.get('description', '')}"
            )
        return data.get("result")

    @retry(
        retry=retry_if_exception_type(TelegramAPIError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        reraise=True
    )
    async def get_updates(self) -> list[dict[str, Any]]:
        updates = await self._call("getUpdates", {
            "offset": self._offset,
            "timeout": self.settings.poll_timeout_seconds,
            "allowed_updates": ["message"],
        })
        if updates:
            self._offset = max(u["update_id"] for u in updates) + 1
        return updates or []

    async def send_message(self, chat_id: int | str, text: str, parse_mode: Optional[str] = None) -> None:
        for chunk in split_text(text):
            payload: dict[str, Any] = {"chat_id": chat_id, "text": chunk}
            if parse_mode:
                payload["parse_mode"] = parse_mode
            await self._call("sendMessage", payload)

    async def send_typing(self, chat_id: int | str) -> None:
        try:
            await self._call("sendChatAction", {"chat_id": chat_id, "action": "typing"})
        except TelegramAPIError as e:
            logger.debug("Typing indicator failed", chat_id=chat_id, error=str(e))

    async def handle_update(self, update: dict[str, Any]) -> None:
        """Answer one update from ``getUpdates``."""
        message = update.get("message") or {}
        text = message.get("text")
        if not text:
            return

        sender = message.get("from") or {}
        chat = message.get("chat") or {}
        chat_id = chat.get("id")
        command = text.split()[0].split("@")[0] if text.startswith("/") else ""

        if command == "/start":
            await self.send_message(chat_id, START_TEXT)
            return
        if command == "/help":
            await self.send_message(chat_id, HELP_TEXT, parse_mode="Markdown")
            return
        if command == "/status":
            await self.send_message(chat_id, STATUS_TEXT)
            return

        user_id = sender.get("id")
        if not self.is_user_allowed(user_id):
            logger.warning(
                "Unauthorized user attempted access",
                user_id=user_id,
                username=sender.get("username"),
            )
            await self.send_message(chat_id, DENIED_TEXT)
            return

        incoming = IncomingMessage(
            channel=CHANNEL,
            user_id=str(user_id),
            username=sender.get("username", ""),
            text=text,
            chat_id=str(chat_id),
            is_group=chat.get("type") in ("group", "supergroup"),
            reply_to_id=(
                str(message["reply_to_message"]["message_id"])
                if message.get("reply_to_message") else None
            ),
            metadata={
                "first_name": sender.get("first_name", ""),
                "last_name": sender.get("last_name", ""),
            },
        )
        logger.info(
            "Telegram message received",
            user_id=incoming.user_id,
            username=incoming.username,
            is_group=incoming.is_group,
        )

        await self.send_typing(chat_id)

        try:
            reply = await self.handler(incoming)
        except AgentProcessingError:
            await self.send_message(chat_id, FAILURE_TEXT)
            return

        await self.send_message(chat_id, reply)

    async def run(self) -> None:
        """Poll until cancelled."""
        logger.info("Telegram bot started")
        try:
            while True:
                try:
                    updates = await self.get_updates()
                except TelegramAPIError as e:
                    logger.error("Telegram polling failed", error=str(e))
                    await asyncio.sleep(5)
                    continue

                for update in updates:
                    bind_context(channel=CHANNEL, update_id=update.get("update_id"))
                    try:
                        await self.handle_update(update)
                    except TelegramAPIError as e:
                        logger.error("Telegram reply failed", error=str(e))
                    except Exception as e:
                        logger.error("Telegram update handling failed", error=str(e), exc_info=True)
                    finally:
                        clear_context()
        finally:
            await self.close()
            logger.info("Telegram bot stopped")
