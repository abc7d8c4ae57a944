"""SQLite-backed substitute for the DynamoDB session and conversation tables."""

from __future__ import annotations

import json
import sqlite3
from contextlib import closing, contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, Optional

from federated_chat.core.exceptions import InvalidState, NoSessionExists
from federated_chat.models import (
    ConversationContext,
    MessageMetadata,
    OAuthStateEntry,
    StoredSessionRecord,
    utcnow,
)


class SQLiteStore:
    """Key-value records in a single table keyed by (pk, sk)."""

    def __init__(self, db_path: str, *, clock: Callable[[], datetime] = utcnow) -> None:
        self._db_path = Path(db_path)
        if self._db_path.parent and not self._db_path.parent.exists():
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._clock = clock
        self._ensure_schema()

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        """Yield a connection inside a transaction and close it afterwards."""
        with closing(sqlite3.connect(self._db_path, check_same_thread=False)) as conn:
            conn.row_factory = sqlite3.Row
            with conn:
                yield conn

    def _ensure_schema(self) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS kv_records (
                    pk TEXT NOT NULL,
                    sk TEXT NOT NULL,
                    data TEXT NOT NULL,
                    PRIMARY KEY (pk, sk)
                )
                """
            )

    def put_item(self, pk: str, sk: str, item: Dict[str, Any]) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO kv_records (pk, sk, data)
                VALUES (?, ?, ?)
                ON CONFLICT(pk, sk) DO UPDATE SET data = excluded.data
                """,
                (pk, sk, json.dumps(item)),
            )

    def get_item(self, pk: str, sk: str) -> Optional[Dict[str, Any]]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT data FROM kv_records WHERE pk = ? AND sk = ?",
                (pk, sk),
            ).fetchone()
        if not row:
            return None
        return json.loads(row["data"])

    def delete_item(self, pk: str, sk: str) -> None:
        with self._connect() as conn:
            conn.execute("DELETE FROM kv_records WHERE pk = ? AND sk = ?", (pk, sk))

    def pop_item(self, pk: str, sk: str) -> Optional[Dict[str, Any]]:
        """Delete a record and return it, or ``None`` if another caller got it first."""
        with self._connect() as conn:
            conn.execute("BEGIN IMMEDIATE")
            row = conn.execute(
                "SELECT data FROM kv_records WHERE pk = ? AND sk = ?",
                (pk, sk),
            ).fetchone()
            cursor = conn.execute(
                "DELETE FROM kv_records WHERE pk = ? AND sk = ?", (pk, sk)
            )
            if not row or cursor.rowcount != 1:
                return None
        return json.loads(row["data"])

    def _expired(self, item: Dict[str, Any], attribute: str) -> bool:
        value = item.get(attribute)
        return value is not None and int(value) <= int(self._clock().timestamp())


def _item(model: Any) -> Dict[str, Any]:
    return model.model_dump(mode="json", by_alias=True, exclude_none=True)


class SQLiteSessionStore(SQLiteStore):
    def put_state_entry(self, entry: OAuthStateEntry) -> None:
        self.put_item(f"state#{entry.state}", "oidc", _item(entry))

    def get_and_consume_state_entry(self, state: str) -> OAuthStateEntry:
        item = self.pop_item(f"state#{state}", "oidc")
        if item is None:
            raise InvalidState("Unknown or already used state.")
        if self._expired(item, "ttl"):
            raise InvalidState("State entry has expired.")
        return OAuthStateEntry.model_validate(item)

    def put_session(self, record: StoredSessionRecord) -> None:
        self.put_item(f"owner#{record.owner_id}", "session", _item(record))

    def get_session(self, owner_id: str) -> StoredSessionRecord:
        item = self.get_item(f"owner#{owner_id}", "session")
        if item is None or self._expired(item, "ttl"):
            raise NoSessionExists(f"No session stored for owner {owner_id}.")
        return StoredSessionRecord.model_validate(item)


class SQLiteConversationStore(SQLiteStore):
    def get_conversation_context(self, channel: str) -> Optional[ConversationContext]:
        item = self.get_item(f"channel#{channel}", "context")
        if item is None or self._expired(item, "expireAt"):
            return None
        return ConversationContext.model_validate(item)

    def save_conversation_context(self, context: ConversationContext) -> None:
        self.put_item(f"channel#{context.channel}", "context", _item(context))

    def delete_conversation_context(self, channel: str) -> None:
        self.delete_item(f"channel#{channel}", "context")

    def save_message_metadata(self, metadata: MessageMetadata) -> None:
        self.put_item(f"message#{metadata.message_id}", "metadata", _item(metadata))

    def get_message_metadata(self, message_id: str) -> Optional[MessageMetadata]:
        item = self.get_item(f"message#{message_id}", "metadata")
        if item is None or self._expired(item, "expireAt"):
            return None
        return MessageMetadata.model_validate(item)


__all__ = ["SQLiteConversationStore", "SQLiteSessionStore", "SQLiteStore"]
