"""Subset of the Telegram Bot API update payload handled by the webhook."""

from __future__ import annotations

from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class TelegramMessage(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    message_id: int
    date: int
    text: Optional[str] = None
    caption: Optional[str] = None
    chat: Dict[str, Any]
    from_: Optional[Dict[str, Any]] = Field(None, alias="from")
    message_thread_id: Optional[int] = None

    @property
    def chat_id(self) -> int:
        return int(self.chat["id"])

    @property
    def is_private(self) -> bool:
        return self.chat.get("type") == "private"


class TelegramCallbackQuery(BaseModel):
    """Button press on an inline keyboard."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: str
    from_: Dict[str, Any] = Field(..., alias="from")
    data: Optional[str] = None
    message: Optional[TelegramMessage] = None


class TelegramUpdate(BaseModel):
    model_config = ConfigDict(extra="ignore")

    update_id: int
    message: Optional[TelegramMessage] = None
    callback_query: Optional[TelegramCallbackQuery] = None


__all__ = ["TelegramCallbackQuery", "TelegramMessage", "TelegramUpdate"]
