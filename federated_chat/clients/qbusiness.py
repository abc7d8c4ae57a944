"""
Amazon Q Business chat adapter.

Calls are made with the end user's identity-aware credentials and the
response is surfaced as typed chat events.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Callable, Optional

from botocore.exceptions import BotoCoreError, ClientError

from federated_chat.core.config import ChatSettings
from federated_chat.core.exceptions import ChatBackendError
from federated_chat.models import (
    AttachmentFailure,
    ChatEvent,
    MetadataEvent,
    SessionCredentials,
    SourceAttribution,
    TextDelta,
)

logger = logging.getLogger(__name__)

ClientFactory = Callable[[SessionCredentials], Any]


class QBusinessChatClient:
    """Invoke ``ChatSync`` and ``PutFeedback`` on behalf of a user."""

    def __init__(
        self,
        settings: ChatSettings,
        *,
        client_factory: Optional[ClientFactory] = None,
    ) -> None:
        self._settings = settings
        self._client_factory = client_factory or self._default_client

    def _default_client(self, credentials: SessionCredentials) -> Any:
        session = credentials.boto3_session(self._settings.region_name)
        return session.client("qbusiness", endpoint_url=self._settings.endpoint_url)

    async def stream_chat(
        self,
        credentials: SessionCredentials,
        message: str,
        *,
        conversation_id: Optional[str] = None,
        parent_message_id: Optional[str] = None,
    ) -> AsyncIterator[ChatEvent]:
        """Yield the events of one chat turn.

        Raises ``ChatBackendError`` when the backend call fails.
        """
        request: dict[str, Any] = {
            "applicationId": self._settings.application_id,
            "userMessage": message,
            "clientToken": str(uuid.uuid4()),
        }
        if conversation_id and parent_message_id:
            request["conversationId"] = conversation_id
            request["parentMessageId"] = parent_message_id

        def _invoke() -> dict[str, Any]:
            client = self._client_factory(credentials)
            return client.chat_sync(**request)

        try:
            response = await asyncio.to_thread(_invoke)
        except (ClientError, BotoCoreError) as exc:
            raise ChatBackendError(f"Chat call failed: {_error_code(exc)}") from exc

        for event in response_to_events(response):
            yield event

    async def put_feedback(
        self,
        credentials: SessionCredentials,
        *,
        conversation_id: str,
        message_id: str,
        useful: bool,
        submitted_at: Optional[datetime] = None,
    ) -> None:
        usefulness = {
            "usefulness": "USEFUL" if useful else "NOT_USEFUL",
            "reason": "HELPFUL" if useful else "NOT_HELPFUL",
            "submittedAt": submitted_at or datetime.now(timezone.utc),
        }

        def _invoke() -> None:
            client = self._client_factory(credentials)
            client.put_feedback(
                applicationId=self._settings.application_id,
                conversationId=conversation_id,
                messageId=message_id,
                messageUsefulness=usefulness,
            )

        try:
            await asyncio.to_thread(_invoke)
        except (ClientError, BotoCoreError) as exc:
            raise ChatBackendError(f"Feedback submission failed: {_error_code(exc)}") from exc


def response_to_events(response: dict[str, Any]) -> list[ChatEvent]:
    """Map a ``ChatSync`` response onto attachment failures and terminal metadata."""
    events: list[ChatEvent] = []
    for failed in response.get("failedAttachments") or []:
        error = failed.get("error") or {}
        events.append(
            AttachmentFailure(
                name=failed.get("name", "attachment"),
                status=failed.get("status", "FAILED"),
                error_code=error.get("errorCode"),
                error_message=error.get("errorMessage"),
            )
        )

    conversation_id = response.get("conversationId")
    system_message_id = response.get("systemMessageId")
    if not conversation_id or not system_message_id:
        # Without identifiers the answer cannot be continued or rated.
        text = response.get("systemMessage")
        if text:
            events.append(TextDelta(text=text))
        return events

    events.append(
        MetadataEvent(
            conversation_id=conversation_id,
            system_message_id=system_message_id,
            user_message_id=response.get("userMessageId"),
            final_text_message=response.get("systemMessage"),
            source_attributions=tuple(
                SourceAttribution.from_api(item)
                for item in response.get("sourceAttributions") or []
            ),
        )
    )
    return events


def _error_code(exc: Exception) -> str:
    if isinstance(exc, ClientError):
        return exc.response.get("Error", {}).get("Code", "Unknown")
    return type(exc).__name__


__all__ = ["QBusinessChatClient", "response_to_events"]
