"""Storage interfaces shared by the DynamoDB and SQLite backends."""

from __future__ import annotations

from typing import Optional, Protocol

from federated_chat.core.config import AWSSettings
from federated_chat.models import (
    ConversationContext,
    MessageMetadata,
    OAuthStateEntry,
    StoredSessionRecord,
)


class SessionStore(Protocol):
    def put_state_entry(self, entry: OAuthStateEntry) -> None:
        ...

    def get_and_consume_state_entry(self, state: str) -> OAuthStateEntry:
        """Delete and return the entry; ``InvalidState`` when absent or expired."""
        ...

    def put_session(self, record: StoredSessionRecord) -> None:
        ...

    def get_session(self, owner_id: str) -> StoredSessionRecord:
        """Return the stored record; ``NoSessionExists`` when absent."""
        ...


class ConversationStore(Protocol):
    def get_conversation_context(self, channel: str) -> Optional[ConversationContext]:
        ...

    def save_conversation_context(self, context: ConversationContext) -> None:
        ...

    def delete_conversation_context(self, channel: str) -> None:
        ...

    def save_message_metadata(self, metadata: MessageMetadata) -> None:
        ...

    def get_message_metadata(self, message_id: str) -> Optional[MessageMetadata]:
        ...


def build_stores(settings: AWSSettings) -> tuple[SessionStore, ConversationStore]:
    """Instantiate the configured storage backend."""
    if settings.storage_backend == "sqlite":
        from federated_chat.clients.sqlite_store import (
            SQLiteConversationStore,
            SQLiteSessionStore,
        )

        return (
            SQLiteSessionStore(settings.sqlite_db_path),
            SQLiteConversationStore(settings.sqlite_db_path),
        )

    from federated_chat.clients.dynamodb import (
        DynamoDBConversationStore,
        DynamoDBSessionStore,
    )

    return DynamoDBSessionStore(settings), DynamoDBConversationStore(settings)


__all__ = ["ConversationStore", "SessionStore", "build_stores"]
