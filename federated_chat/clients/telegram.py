"""
Thin Telegram Bot API client and the message updater used while streaming.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

import httpx

from federated_chat.core.exceptions import UpstreamHttpError
from federated_chat.services.streaming import Flush

logger = logging.getLogger(__name__)

TELEGRAM_API_BASE = "https://api.telegram.org"
# Telegram rejects message texts longer than this.
MAX_MESSAGE_LENGTH = 4096
EMPTY_ANSWER = "No answer was returned."


def feedback_keyboard(message_id: str, *, has_sources: bool) -> dict[str, Any]:
    """Inline keyboard with rating buttons and, when available, a sources button."""
    rows = [
        [
            {"text": "\U0001F44D", "callback_data": f"feedback:up:{message_id}"},
            {"text": "\U0001F44E", "callback_data": f"feedback:down:{message_id}"},
        ]
    ]
    if has_sources:
        rows.append([{"text": "View source(s)", "callback_data": f"sources:{message_id}"}])
    return {"inline_keyboard": rows}


class TelegramBotClient:
    """Call the Bot API methods needed to stream answers into a chat."""

    def __init__(
        self,
        bot_token: str,
        *,
        timeout: float = 10.0,
        http_client: httpx.AsyncClient | None = None,
        api_base: str = TELEGRAM_API_BASE,
    ) -> None:
        if not bot_token:
            raise ValueError("Telegram bot token must be provided.")
        self._base_url = f"{api_base.rstrip('/')}/bot{bot_token}"
        self._timeout = timeout
        self._http_client = http_client

    @asynccontextmanager
    async def _client(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._http_client is not None:
            yield self._http_client
            return
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            yield client

    async def _call(self, method: str, payload: dict[str, Any]) -> Any:
        try:
            async with self._client() as client:
                resp = await client.post(f"{self._base_url}/{method}", json=payload)
        except httpx.HTTPError as exc:
            raise UpstreamHttpError(f"Telegram {method} request failed.") from exc

        try:
            body = resp.json()
        except ValueError:
            body = {}
        if resp.status_code != httpx.codes.OK or not body.get("ok"):
            description = body.get("description", "unknown error")
            logger.warning("Telegram %s failed: %s %s", method, resp.status_code, description)
            raise UpstreamHttpError(
                f"Telegram {method} failed: {description}", status_code=resp.status_code
            )
        return body.get("result")

    async def send_message(
        self,
        chat_id: int | str,
        text: str,
        *,
        reply_markup: Optional[dict[str, Any]] = None,
        reply_to_message_id: Optional[int] = None,
    ) -> int:
        """Send a message and return its id."""
        payload: dict[str, Any] = {"chat_id": chat_id, "text": text}
        if reply_markup:
            payload["reply_markup"] = reply_markup
        if reply_to_message_id is not None:
            payload["reply_to_message_id"] = reply_to_message_id
        result = await self._call("sendMessage", payload)
        return int(result["message_id"])

    async def edit_message_text(
        self,
        chat_id: int | str,
        message_id: int,
        text: str,
        *,
        reply_markup: Optional[dict[str, Any]] = None,
    ) -> None:
        payload: dict[str, Any] = {
            "chat_id": chat_id,
            "message_id": message_id,
            "text": text,
        }
        if reply_markup:
            payload["reply_markup"] = reply_markup
        await self._call("editMessageText", payload)

    async def answer_callback_query(
        self, callback_query_id: str, *, text: Optional[str] = None
    ) -> None:
        payload: dict[str, Any] = {"callback_query_id": callback_query_id}
        if text:
            payload["text"] = text
        await self._call("answerCallbackQuery", payload)


class TelegramMessageUpdater:
    """Render flushes by editing one placeholder message in place."""

    def __init__(self, bot: TelegramBotClient, chat_id: int | str, message_id: int) -> None:
        self._bot = bot
        self._chat_id = chat_id
        self._message_id = message_id
        self._last_sent: Optional[tuple[str, Optional[dict[str, Any]]]] = None

    async def send_update(self, flush: Flush) -> None:
        text = (flush.text or EMPTY_ANSWER)[:MAX_MESSAGE_LENGTH]
        markup = None
        if flush.final and not flush.error and flush.system_message_id:
            markup = feedback_keyboard(flush.system_message_id, has_sources=flush.has_sources)

        # Telegram rejects edits that leave the message unchanged.
        if self._last_sent == (text, markup):
            return
        await self._bot.edit_message_text(
            self._chat_id, self._message_id, text, reply_markup=markup
        )
        self._last_sent = (text, markup)


__all__ = [
    "EMPTY_ANSWER",
    "MAX_MESSAGE_LENGTH",
    "TelegramBotClient",
    "TelegramMessageUpdater",
    "feedback_keyboard",
]
