"""
DynamoDB tables for OAuth state, encrypted sessions and conversation caches.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Callable, Dict, Optional

import boto3
from boto3.dynamodb.conditions import Attr
from botocore.exceptions import ClientError

from federated_chat.core.config import AWSSettings
from federated_chat.core.exceptions import InvalidState, NoSessionExists
from federated_chat.models import (
    ConversationContext,
    MessageMetadata,
    OAuthStateEntry,
    StoredSessionRecord,
    utcnow,
)


def _item(model: Any) -> Dict[str, Any]:
    return model.model_dump(mode="json", by_alias=True, exclude_none=True)


def _expired(item: Dict[str, Any], attribute: str, now: datetime) -> bool:
    # TTL deletion is lazy, so expired items can still be returned.
    value = item.get(attribute)
    return value is not None and int(value) <= int(now.timestamp())


class _DynamoDBTables:
    def __init__(
        self,
        settings: AWSSettings,
        *,
        resource: Any | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._settings = settings
        self._resource = resource or boto3.resource(
            "dynamodb", region_name=settings.region_name
        )
        self._clock = clock


class DynamoDBSessionStore(_DynamoDBTables):
    """State entries keyed by ``state`` and session records keyed by ``ownerId``."""

    def __init__(self, settings: AWSSettings, **kwargs: Any) -> None:
        super().__init__(settings, **kwargs)
        self._state_table = self._resource.Table(settings.oidc_state_table_name)
        self._session_table = self._resource.Table(settings.session_table_name)

    def put_state_entry(self, entry: OAuthStateEntry) -> None:
        self._state_table.put_item(Item=_item(entry))

    def get_and_consume_state_entry(self, state: str) -> OAuthStateEntry:
        """Delete the entry and return its previous contents.

        The conditional delete lets exactly one concurrent caller observe the
        entry; every other caller gets ``InvalidState``.
        """
        try:
            response = self._state_table.delete_item(
                Key={"state": state},
                ConditionExpression=Attr("state").exists(),
                ReturnValues="ALL_OLD",
            )
        except ClientError as exc:
            if exc.response.get("Error", {}).get("Code") == "ConditionalCheckFailedException":
                raise InvalidState("Unknown or already used state.") from exc
            raise

        item = response.get("Attributes")
        if not item:
            raise InvalidState("Unknown or already used state.")
        if _expired(item, "ttl", self._clock()):
            raise InvalidState("State entry has expired.")
        return OAuthStateEntry.model_validate(item)

    def put_session(self, record: StoredSessionRecord) -> None:
        self._session_table.put_item(Item=_item(record))

    def get_session(self, owner_id: str) -> StoredSessionRecord:
        response = self._session_table.get_item(Key={"ownerId": owner_id})
        item = response.get("Item")
        if not item or _expired(item, "ttl", self._clock()):
            raise NoSessionExists(f"No session stored for owner {owner_id}.")
        return StoredSessionRecord.model_validate(item)


class DynamoDBConversationStore(_DynamoDBTables):
    """Channel conversation context and per-answer metadata caches."""

    def __init__(self, settings: AWSSettings, **kwargs: Any) -> None:
        super().__init__(settings, **kwargs)
        self._cache_table = self._resource.Table(settings.cache_table_name)
        self._metadata_table = self._resource.Table(settings.message_metadata_table_name)

    def get_conversation_context(self, channel: str) -> Optional[ConversationContext]:
        item = self._cache_table.get_item(Key={"channel": channel}).get("Item")
        if not item or _expired(item, "expireAt", self._clock()):
            return None
        return ConversationContext.model_validate(item)

    def save_conversation_context(self, context: ConversationContext) -> None:
        self._cache_table.put_item(Item=_item(context))

    def delete_conversation_context(self, channel: str) -> None:
        self._cache_table.delete_item(Key={"channel": channel})

    def save_message_metadata(self, metadata: MessageMetadata) -> None:
        self._metadata_table.put_item(Item=_item(metadata))

    def get_message_metadata(self, message_id: str) -> Optional[MessageMetadata]:
        item = self._metadata_table.get_item(Key={"messageId": message_id}).get("Item")
        if not item or _expired(item, "expireAt", self._clock()):
            return None
        return MessageMetadata.model_validate(item)


__all__ = ["DynamoDBConversationStore", "DynamoDBSessionStore"]
