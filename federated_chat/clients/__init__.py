"""Expose constructed client wrappers."""

from .identity_center import TokenExchangeClient
from .oidc import IdentityProviderClient
from .qbusiness import QBusinessChatClient
from .secrets import ClientSecretProvider
from .stores import ConversationStore, SessionStore, build_stores
from .telegram import TelegramBotClient, TelegramMessageUpdater

__all__ = [
    "ClientSecretProvider",
    "ConversationStore",
    "IdentityProviderClient",
    "QBusinessChatClient",
    "SessionStore",
    "TelegramBotClient",
    "TelegramMessageUpdater",
    "TokenExchangeClient",
    "build_stores",
]
