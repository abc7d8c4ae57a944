try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover - fallback for direct execution
    import _bootstrap  # type: ignore # noqa: F401

from datetime import datetime, timedelta, timezone

import pytest
from botocore.exceptions import ClientError

from federated_chat.clients.dynamodb import DynamoDBConversationStore, DynamoDBSessionStore
from federated_chat.clients.sqlite_store import SQLiteConversationStore, SQLiteSessionStore
from federated_chat.core.config import AWSSettings
from federated_chat.core.exceptions import InvalidState, NoSessionExists
from federated_chat.models import (
    ConversationContext,
    MessageMetadata,
    OAuthStateEntry,
    StoredSessionRecord,
)

NOW = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


def _clock() -> datetime:
    return NOW


def _state_entry(state: str = "s1", ttl_offset: int = 300) -> OAuthStateEntry:
    return OAuthStateEntry(
        state=state,
        owner_id="U1",
        created_at=NOW,
        ttl=int(NOW.timestamp()) + ttl_offset,
    )


def _context(expire_offset: int = 3600) -> ConversationContext:
    return ConversationContext(
        channel="telegram:42:100",
        conversation_id="conv-1",
        parent_message_id="sys-1",
        latest_ts=int(NOW.timestamp() * 1000),
        expire_at=int(NOW.timestamp()) + expire_offset,
    )


class FakeTable:
    def __init__(self, key: str) -> None:
        self.key = key
        self.items: dict[str, dict] = {}

    def put_item(self, *, Item: dict) -> None:
        self.items[Item[self.key]] = dict(Item)

    def get_item(self, *, Key: dict) -> dict:
        item = self.items.get(Key[self.key])
        return {"Item": dict(item)} if item else {}

    def delete_item(self, *, Key: dict, ConditionExpression=None, ReturnValues=None) -> dict:
        item = self.items.pop(Key[self.key], None)
        if item is None and ConditionExpression is not None:
            raise ClientError(
                {"Error": {"Code": "ConditionalCheckFailedException", "Message": "gone"}},
                "DeleteItem",
            )
        if ReturnValues == "ALL_OLD" and item:
            return {"Attributes": item}
        return {}


class FakeDynamoDBResource:
    KEYS = {
        "oidcStateTable": "state",
        "sessionStore": "ownerId",
        "cacheTable": "channel",
        "messageMetadataTable": "messageId",
    }

    def __init__(self) -> None:
        self.tables: dict[str, FakeTable] = {}

    def Table(self, name: str) -> FakeTable:  # noqa: N802 - mirrors boto3
        if name not in self.tables:
            self.tables[name] = FakeTable(self.KEYS[name])
        return self.tables[name]


@pytest.fixture()
def aws_settings() -> AWSSettings:
    return AWSSettings(
        oidc_state_table_name="oidcStateTable",
        session_table_name="sessionStore",
        cache_table_name="cacheTable",
        message_metadata_table_name="messageMetadataTable",
    )


@pytest.fixture(params=["sqlite", "dynamodb"])
def session_store(request, tmp_path, aws_settings):
    if request.param == "sqlite":
        return SQLiteSessionStore(str(tmp_path / "sessions.db"), clock=_clock)
    return DynamoDBSessionStore(aws_settings, resource=FakeDynamoDBResource(), clock=_clock)


@pytest.fixture(params=["sqlite", "dynamodb"])
def conversation_store(request, tmp_path, aws_settings):
    if request.param == "sqlite":
        return SQLiteConversationStore(str(tmp_path / "conversations.db"), clock=_clock)
    return DynamoDBConversationStore(aws_settings, resource=FakeDynamoDBResource(), clock=_clock)


def test_state_entry_is_single_use(session_store) -> None:
    session_store.put_state_entry(_state_entry())

    entry = session_store.get_and_consume_state_entry("s1")
    assert entry.owner_id == "U1"
    assert entry.created_at == NOW

    with pytest.raises(InvalidState):
        session_store.get_and_consume_state_entry("s1")


def test_unknown_state_is_rejected(session_store) -> None:
    with pytest.raises(InvalidState):
        session_store.get_and_consume_state_entry("never-issued")


def test_expired_state_is_rejected(session_store) -> None:
    session_store.put_state_entry(_state_entry(ttl_offset=-1))

    with pytest.raises(InvalidState):
        session_store.get_and_consume_state_entry("s1")


def test_session_record_roundtrip(session_store) -> None:
    record = StoredSessionRecord(
        owner_id="U1",
        encrypted_creds="opaque",
        expiration=NOW + timedelta(minutes=13),
        timestamp=NOW,
    )
    session_store.put_session(record)

    assert session_store.get_session("U1") == record
    with pytest.raises(NoSessionExists):
        session_store.get_session("U2")


def test_session_put_replaces_previous_record(session_store) -> None:
    for blob in ("first", "second"):
        session_store.put_session(
            StoredSessionRecord(
                owner_id="U1", encrypted_creds=blob, expiration=NOW, timestamp=NOW
            )
        )

    assert session_store.get_session("U1").encrypted_creds == "second"


def test_session_record_past_its_ttl_is_absent(session_store) -> None:
    session_store.put_session(
        StoredSessionRecord(
            owner_id="U1",
            encrypted_creds="opaque",
            expiration=NOW,
            timestamp=NOW - timedelta(days=8),
            ttl=int(NOW.timestamp()),
        )
    )

    with pytest.raises(NoSessionExists):
        session_store.get_session("U1")


def test_session_record_ttl_is_persisted(session_store) -> None:
    record = StoredSessionRecord(
        owner_id="U1",
        encrypted_creds="opaque",
        expiration=NOW,
        timestamp=NOW,
        ttl=int(NOW.timestamp()) + 60,
    )
    session_store.put_session(record)

    assert session_store.get_session("U1").ttl == record.ttl


def test_conversation_context_lifecycle(conversation_store) -> None:
    context = _context()
    conversation_store.save_conversation_context(context)
    assert conversation_store.get_conversation_context(context.channel) == context

    conversation_store.delete_conversation_context(context.channel)
    assert conversation_store.get_conversation_context(context.channel) is None


def test_expired_conversation_context_is_absent(conversation_store) -> None:
    context = _context(expire_offset=0)
    conversation_store.save_conversation_context(context)

    assert conversation_store.get_conversation_context(context.channel) is None


def test_message_metadata_roundtrip(conversation_store) -> None:
    metadata = MessageMetadata(
        message_id="sys-1",
        conversation_id="conv-1",
        system_message_id="sys-1",
        user_message_id="user-1",
        source_attributions=[{"title": "Runbook", "url": "https://wiki.example.com/rb"}],
        ts=int(NOW.timestamp() * 1000),
        expire_at=int(NOW.timestamp()) + 60,
    )
    conversation_store.save_message_metadata(metadata)

    assert conversation_store.get_message_metadata("sys-1") == metadata
    assert conversation_store.get_message_metadata("missing") is None


def test_dynamodb_items_use_camel_case_keys(aws_settings) -> None:
    resource = FakeDynamoDBResource()
    store = DynamoDBSessionStore(aws_settings, resource=resource, clock=_clock)

    store.put_state_entry(_state_entry())

    item = resource.tables["oidcStateTable"].items["s1"]
    assert set(item) == {"state", "ownerId", "timestamp", "ttl"}


def test_build_stores_selects_sqlite_backend(tmp_path, monkeypatch) -> None:
    from federated_chat.clients.stores import build_stores

    monkeypatch.setenv("STORAGE_BACKEND", "sqlite")
    monkeypatch.setenv("SQLITE_DB_PATH", str(tmp_path / "gw.db"))
    settings = AWSSettings()

    session_store, conversation_store = build_stores(settings)

    assert isinstance(session_store, SQLiteSessionStore)
    assert isinstance(conversation_store, SQLiteConversationStore)


def test_sqlite_store_closes_every_connection(tmp_path, monkeypatch) -> None:
    import sqlite3

    opened: list[sqlite3.Connection] = []
    real_connect = sqlite3.connect

    def _tracking_connect(*args, **kwargs):
        conn = real_connect(*args, **kwargs)
        opened.append(conn)
        return conn

    monkeypatch.setattr(sqlite3, "connect", _tracking_connect)
    store = SQLiteSessionStore(str(tmp_path / "sessions.db"), clock=_clock)
    store.put_state_entry(_state_entry())
    store.get_and_consume_state_entry("s1")

    assert len(opened) == 3
    for conn in opened:
        with pytest.raises(sqlite3.ProgrammingError):
            conn.execute("SELECT 1")
