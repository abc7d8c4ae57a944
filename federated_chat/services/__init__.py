"""Service layer exports."""

from .conversation import ConversationService, SignInRequired, channel_key
from .encryption import EncryptionProvider, KMSKeyProvider, LocalKeyProvider
from .session_manager import SessionManager
from .streaming import Flush, StreamingResponseAggregator, StreamingTurn

__all__ = [
    "ConversationService",
    "EncryptionProvider",
    "Flush",
    "KMSKeyProvider",
    "LocalKeyProvider",
    "SessionManager",
    "SignInRequired",
    "StreamingResponseAggregator",
    "StreamingTurn",
    "channel_key",
]
