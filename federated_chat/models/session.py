"""
Domain models for federated credential sessions and conversation caches.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

import boto3
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class _CamelModel(BaseModel):
    """Models persisted with the camelCase attribute names of the stored tables."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class OAuthStateEntry(_CamelModel):
    """Single-use state issued when a sign-in flow starts."""

    state: str
    owner_id: str
    created_at: datetime = Field(..., alias="timestamp")
    ttl: int = Field(..., description="Unix epoch seconds after which the entry is void.")

    def is_expired(self, now: datetime) -> bool:
        return self.ttl <= int(now.timestamp())


class SessionCredentials(BaseModel):
    """Temporary credentials handed to the chat backend."""

    access_key_id: str
    secret_access_key: str = Field(..., repr=False)
    session_token: str = Field(..., repr=False)

    def boto3_session(self, region_name: str) -> boto3.session.Session:
        """Build a boto3 session acting as the end user."""
        return boto3.session.Session(
            aws_access_key_id=self.access_key_id,
            aws_secret_access_key=self.secret_access_key,
            aws_session_token=self.session_token,
            region_name=region_name,
        )


class TemporaryCredentials(SessionCredentials):
    """Credentials as issued by STS, with the issuer's own expiry."""

    expiration: datetime

    @field_validator("expiration")
    @classmethod
    def _utc(cls, value: datetime) -> datetime:
        return _as_utc(value)


class Session(_CamelModel):
    """Decrypted credential session for one owner.

    ``expiration`` is already moved earlier than the issuer's value by the
    configured clock skew.
    """

    owner_id: str
    access_key_id: str
    secret_access_key: str = Field(..., repr=False)
    session_token: str = Field(..., repr=False)
    expiration: datetime
    refresh_token: Optional[str] = Field(None, repr=False)

    @field_validator("expiration")
    @classmethod
    def _utc(cls, value: datetime) -> datetime:
        return _as_utc(value)

    def has_expired(self, now: datetime) -> bool:
        return self.expiration < now

    def credentials(self) -> SessionCredentials:
        return SessionCredentials(
            access_key_id=self.access_key_id,
            secret_access_key=self.secret_access_key,
            session_token=self.session_token,
        )

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)

    @classmethod
    def from_json(cls, payload: str | bytes) -> "Session":
        return cls.model_validate_json(payload)


class StoredSessionRecord(_CamelModel):
    """Row layout of the session table."""

    owner_id: str
    encrypted_creds: str
    expiration: datetime
    timestamp: datetime
    ttl: Optional[int] = Field(None, description="Unix epoch seconds after which the record is void.")


class ConversationContext(_CamelModel):
    """Conversation to continue for a channel or thread."""

    channel: str
    conversation_id: str
    parent_message_id: str
    latest_ts: int
    expire_at: int


class MessageMetadata(_CamelModel):
    """Identifiers and citations needed to act on an answer later."""

    message_id: str
    conversation_id: str
    system_message_id: str
    user_message_id: Optional[str] = None
    source_attributions: list[dict[str, Any]] = Field(default_factory=list)
    ts: int
    expire_at: int


__all__ = [
    "ConversationContext",
    "MessageMetadata",
    "OAuthStateEntry",
    "Session",
    "SessionCredentials",
    "StoredSessionRecord",
    "TemporaryCredentials",
    "utcnow",
]
