"""Expose dependency helpers for FastAPI routers."""

from .clients import (
    get_chat_client,
    get_client_secret_provider,
    get_conversation_service,
    get_conversation_store,
    get_encryption_provider,
    get_identity_provider_client,
    get_key_id,
    get_session_manager,
    get_session_store,
    get_telegram_bot,
    get_token_exchange_client,
)
from .config import SettingsDependency, get_app_settings

__all__ = [
    "SettingsDependency",
    "get_app_settings",
    "get_chat_client",
    "get_client_secret_provider",
    "get_conversation_service",
    "get_conversation_store",
    "get_encryption_provider",
    "get_identity_provider_client",
    "get_key_id",
    "get_session_manager",
    "get_session_store",
    "get_telegram_bot",
    "get_token_exchange_client",
]
