"""
Factory functions to provide shared clients and services as FastAPI dependencies.
"""

from functools import lru_cache
from typing import Optional

from federated_chat.clients import (
    ClientSecretProvider,
    ConversationStore,
    IdentityProviderClient,
    QBusinessChatClient,
    SessionStore,
    TelegramBotClient,
    TokenExchangeClient,
    build_stores,
)
from federated_chat.core.config import get_settings
from federated_chat.services import (
    ConversationService,
    EncryptionProvider,
    KMSKeyProvider,
    LocalKeyProvider,
    SessionManager,
)

LOCAL_KEY_ID = "local"


@lru_cache()
def _settings():
    """Internal helper to cache settings for client factories."""
    return get_settings()


@lru_cache()
def get_identity_provider_client() -> IdentityProviderClient:
    """Create a singleton OIDC client; it caches discovery per issuer."""
    settings = _settings()
    return IdentityProviderClient(timeout=settings.oidc.http_timeout_seconds)


@lru_cache()
def get_token_exchange_client() -> TokenExchangeClient:
    return TokenExchangeClient(_settings().identity_center)


@lru_cache()
def get_client_secret_provider() -> ClientSecretProvider:
    settings = _settings()
    return ClientSecretProvider(settings.oidc, region_name=settings.aws.region_name)


@lru_cache()
def _stores() -> tuple[SessionStore, ConversationStore]:
    return build_stores(_settings().aws)


def get_session_store() -> SessionStore:
    return _stores()[0]


def get_conversation_store() -> ConversationStore:
    return _stores()[1]


def get_key_id() -> str:
    """KMS key protecting session records, or the local key marker."""
    return _settings().aws.kms_key_arn or LOCAL_KEY_ID


@lru_cache()
def get_encryption_provider() -> EncryptionProvider:
    """Use KMS when a key is configured, otherwise the locally derived key."""
    settings = _settings()
    if settings.aws.kms_key_arn:
        return EncryptionProvider(KMSKeyProvider(settings.aws.region_name))
    secret = settings.security.local_encryption_secret
    if not secret:
        raise ValueError("Configure KMS_KEY_ARN or LOCAL_ENCRYPTION_SECRET.")
    return EncryptionProvider(LocalKeyProvider(secret=secret))


@lru_cache()
def get_session_manager() -> SessionManager:
    settings = _settings()
    return SessionManager(
        store=get_session_store(),
        identity_provider=get_identity_provider_client(),
        token_exchange=get_token_exchange_client(),
        encryption=get_encryption_provider(),
        client_secrets=get_client_secret_provider(),
        oidc_settings=settings.oidc,
        session_settings=settings.session,
        key_id=get_key_id(),
    )


@lru_cache()
def get_chat_client() -> QBusinessChatClient:
    return QBusinessChatClient(_settings().chat)


@lru_cache()
def get_conversation_service() -> ConversationService:
    return ConversationService(
        sessions=get_session_manager(),
        chat_backend=get_chat_client(),
        store=get_conversation_store(),
        settings=_settings().chat,
    )


@lru_cache()
def get_telegram_bot() -> Optional[TelegramBotClient]:
    """Provide the Bot API client when a bot token is configured."""
    bot_token = _settings().telegram.bot_token
    if not bot_token:
        return None
    return TelegramBotClient(bot_token)


__all__ = [
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
