"""One chat turn end to end, plus conversation reset and answer feedback."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import AsyncIterator, Callable, Optional, Protocol, Union

from federated_chat.clients.stores import ConversationStore
from federated_chat.core.config import ChatSettings
from federated_chat.core.exceptions import NoSessionExists, SessionExpired
from federated_chat.models import (
    ChatEvent,
    ConversationContext,
    MessageMetadata,
    SessionCredentials,
    SourceAttribution,
    utcnow,
)
from federated_chat.services.streaming import (
    ResponseUpdater,
    StreamingResponseAggregator,
    StreamingTurn,
)

logger = logging.getLogger(__name__)

TRUNCATION_NOTICE = (
    "| Please note that you do not have all the conversation history due to limitation"
)


@dataclass(frozen=True)
class SignInRequired:
    """The owner has no usable session and must follow ``authorization_url``."""

    authorization_url: str


ChatOutcome = Union[SignInRequired, StreamingTurn]


class CredentialSessions(Protocol):
    async def start_session(self, owner_id: str) -> str:
        ...

    async def get_session_credentials(self, owner_id: str) -> SessionCredentials:
        ...


class ChatBackend(Protocol):
    def stream_chat(
        self,
        credentials: SessionCredentials,
        message: str,
        *,
        conversation_id: Optional[str] = None,
        parent_message_id: Optional[str] = None,
    ) -> AsyncIterator[ChatEvent]:
        ...

    async def put_feedback(
        self,
        credentials: SessionCredentials,
        *,
        conversation_id: str,
        message_id: str,
        useful: bool,
        submitted_at: Optional[datetime] = None,
    ) -> None:
        ...


def channel_key(
    kind: str,
    team: str,
    channel: str,
    event_ts: str,
    thread_ts: Optional[str] = None,
) -> str:
    """Cache key of a conversation: per channel for messages, per thread otherwise."""
    if kind == "message":
        return f"{team}:{channel}"
    return f"{team}:{channel}:{thread_ts or event_ts}"


def truncate_message(text: str, limit: int) -> str:
    """Keep the tail of an oversized message and append the truncation notice."""
    if len(text) <= limit:
        return text
    return text[len(text) + len(TRUNCATION_NOTICE) - limit :] + TRUNCATION_NOTICE


class ConversationService:
    def __init__(
        self,
        *,
        sessions: CredentialSessions,
        chat_backend: ChatBackend,
        store: ConversationStore,
        settings: ChatSettings,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._sessions = sessions
        self._chat = chat_backend
        self._store = store
        self._settings = settings
        self._clock = clock

    async def handle_message(
        self,
        owner_id: str,
        channel: str,
        text: str,
        updater: ResponseUpdater,
    ) -> ChatOutcome:
        """Answer ``text`` for ``owner_id`` and stream the answer through ``updater``.

        Returns ``SignInRequired`` when the owner must authenticate first.
        Conversation context and message metadata are stored only for turns
        that completed without error.
        """
        try:
            credentials = await self._sessions.get_session_credentials(owner_id)
        except (NoSessionExists, SessionExpired) as exc:
            logger.info("Sign-in required for owner %s: %s", owner_id, type(exc).__name__)
            authorization_url = await self._sessions.start_session(owner_id)
            return SignInRequired(authorization_url=authorization_url)

        context = await asyncio.to_thread(self._store.get_conversation_context, channel)
        message = truncate_message(text, self._settings.max_message_length)
        if len(message) != len(text):
            logger.info("Truncated message of %d characters for %s", len(text), channel)

        events = self._chat.stream_chat(
            credentials,
            message,
            conversation_id=context.conversation_id if context else None,
            parent_message_id=context.parent_message_id if context else None,
        )
        aggregator = StreamingResponseAggregator(
            updater, self._settings.flush_threshold_chars
        )
        turn = await aggregator.aggregate(events)

        if turn.error is None and turn.complete:
            await self._persist(channel, turn)
        return turn

    async def _persist(self, channel: str, turn: StreamingTurn) -> None:
        now = self._clock()
        now_ms = int(now.timestamp() * 1000)
        expire_at = int(
            (now + timedelta(days=self._settings.context_days_to_live)).timestamp()
        )
        context = ConversationContext(
            channel=channel,
            conversation_id=turn.conversation_id,
            parent_message_id=turn.system_message_id,
            latest_ts=now_ms,
            expire_at=expire_at,
        )
        metadata = MessageMetadata(
            message_id=turn.system_message_id,
            conversation_id=turn.conversation_id,
            system_message_id=turn.system_message_id,
            user_message_id=turn.user_message_id,
            source_attributions=[item.to_record() for item in turn.source_attributions],
            ts=now_ms,
            expire_at=expire_at,
        )
        await asyncio.to_thread(self._store.save_conversation_context, context)
        await asyncio.to_thread(self._store.save_message_metadata, metadata)

    async def reset_conversation(self, channel: str) -> None:
        await asyncio.to_thread(self._store.delete_conversation_context, channel)
        logger.info("Conversation reset for %s", channel)

    async def submit_feedback(self, owner_id: str, message_id: str, useful: bool) -> bool:
        """Rate an answer. Returns ``False`` when the answer is no longer known."""
        metadata = await asyncio.to_thread(self._store.get_message_metadata, message_id)
        if metadata is None:
            return False
        credentials = await self._sessions.get_session_credentials(owner_id)
        await self._chat.put_feedback(
            credentials,
            conversation_id=metadata.conversation_id,
            message_id=metadata.system_message_id,
            useful=useful,
            submitted_at=self._clock(),
        )
        logger.info(
            "Recorded %s feedback for message %s",
            "positive" if useful else "negative",
            message_id,
        )
        return True

    async def get_sources(self, message_id: str) -> list[SourceAttribution]:
        metadata = await asyncio.to_thread(self._store.get_message_metadata, message_id)
        if metadata is None:
            return []
        return [SourceAttribution.from_api(record) for record in metadata.source_attributions]


def render_sources(sources: list[SourceAttribution]) -> str:
    if not sources:
        return "No sources are available for this answer."
    lines = []
    for index, source in enumerate(sources, start=1):
        number = source.citation_number or index
        title = source.title or source.url or "Untitled source"
        line = f"[{number}] {title}"
        if source.url and source.url != title:
            line += f"\n{source.url}"
        lines.append(line)
    return "\n\n".join(lines)


__all__ = [
    "ChatOutcome",
    "ConversationService",
    "SignInRequired",
    "TRUNCATION_NOTICE",
    "channel_key",
    "render_sources",
    "truncate_message",
]
