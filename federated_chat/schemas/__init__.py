"""Public schema exports."""

from .auth import AuthorizationResponse
from .telegram import TelegramCallbackQuery, TelegramMessage, TelegramUpdate

__all__ = [
    "AuthorizationResponse",
    "TelegramCallbackQuery",
    "TelegramMessage",
    "TelegramUpdate",
]
