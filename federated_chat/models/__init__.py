"""Domain model exports."""

from .events import (
    AttachmentFailure,
    ChatEvent,
    MetadataEvent,
    SourceAttribution,
    TextDelta,
)
from .session import (
    ConversationContext,
    MessageMetadata,
    OAuthStateEntry,
    Session,
    SessionCredentials,
    StoredSessionRecord,
    TemporaryCredentials,
    utcnow,
)

__all__ = [
    "AttachmentFailure",
    "ChatEvent",
    "ConversationContext",
    "MessageMetadata",
    "MetadataEvent",
    "OAuthStateEntry",
    "Session",
    "SessionCredentials",
    "SourceAttribution",
    "StoredSessionRecord",
    "TemporaryCredentials",
    "TextDelta",
    "utcnow",
]
