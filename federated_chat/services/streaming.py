"""
Coalesce a chat backend event stream into throttled message updates.

The aggregator consumes events in arrival order and awaits every update before
reading the next event, so a slow chat platform paces the stream. Turn states::

    Awaiting -> Buffering -> Flushing (repeatable) -> Finalizing -> Done
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import AsyncIterable, List, Optional, Protocol

from federated_chat.core.exceptions import ChatBackendError
from federated_chat.models import (
    AttachmentFailure,
    ChatEvent,
    MetadataEvent,
    SourceAttribution,
    TextDelta,
)

logger = logging.getLogger(__name__)

ERROR_MESSAGE = "Processing error. Please try again."


@dataclass(frozen=True)
class Flush:
    """One update of the visible answer."""

    text: str
    final: bool = False
    error: bool = False
    has_sources: bool = False
    conversation_id: Optional[str] = None
    system_message_id: Optional[str] = None


class ResponseUpdater(Protocol):
    async def send_update(self, flush: Flush) -> None:
        ...


class TurnState(str, Enum):
    AWAITING = "awaiting"
    BUFFERING = "buffering"
    FLUSHING = "flushing"
    FINALIZING = "finalizing"
    DONE = "done"


@dataclass
class StreamingTurn:
    """Everything learned about one chat turn."""

    conversation_id: Optional[str] = None
    system_message_id: Optional[str] = None
    user_message_id: Optional[str] = None
    output_text: str = ""
    source_attributions: List[SourceAttribution] = field(default_factory=list)
    failed_attachments: List[AttachmentFailure] = field(default_factory=list)
    raw_events: List[ChatEvent] = field(default_factory=list)
    complete: bool = False
    error: Optional[ChatBackendError] = None
    flush_count: int = 0

    @property
    def has_sources(self) -> bool:
        return bool(self.source_attributions)


def render_failed_attachments(failures: List[AttachmentFailure]) -> str:
    if not failures:
        return ""
    lines = ["The following attachments could not be processed:"]
    for failure in failures:
        detail = failure.error_message or failure.error_code or failure.status
        lines.append(f"- {failure.name}: {detail}")
    return "\n".join(lines)


class StreamingResponseAggregator:
    """Turn text deltas into at most one update per ``flush_threshold`` characters."""

    def __init__(self, updater: ResponseUpdater, flush_threshold: int) -> None:
        if flush_threshold <= 0:
            raise ValueError("Flush threshold must be a positive number of characters.")
        self._updater = updater
        self._threshold = flush_threshold
        self._buffer = ""
        self._metadata: Optional[MetadataEvent] = None
        self.state = TurnState.AWAITING

    async def aggregate(self, events: AsyncIterable[ChatEvent]) -> StreamingTurn:
        turn = StreamingTurn()
        self._buffer = ""
        self._metadata = None
        self.state = TurnState.AWAITING

        try:
            async for event in events:
                turn.raw_events.append(event)
                await self._apply(turn, event)
        except ChatBackendError as exc:
            logger.error("Chat stream failed after %d events: %s", len(turn.raw_events), exc)
            turn.error = exc
            self.state = TurnState.FINALIZING
            await self._send(
                turn,
                Flush(
                    text=ERROR_MESSAGE,
                    final=True,
                    error=True,
                    conversation_id=turn.conversation_id,
                ),
            )
            self.state = TurnState.DONE
            return turn

        await self.finalize(turn)
        return turn

    async def _apply(self, turn: StreamingTurn, event: ChatEvent) -> None:
        if isinstance(event, TextDelta):
            self.state = TurnState.BUFFERING
            if self._metadata is None:
                turn.conversation_id = event.conversation_id or turn.conversation_id
                turn.system_message_id = event.system_message_id or turn.system_message_id
                turn.user_message_id = event.user_message_id or turn.user_message_id
            self._buffer += event.text
            turn.output_text += event.text
            # Large deltas are drained in threshold-sized steps.
            while len(self._buffer) >= self._threshold:
                self.state = TurnState.FLUSHING
                self._buffer = self._buffer[self._threshold:]
                flushed = len(turn.output_text) - len(self._buffer)
                await self._send(
                    turn,
                    Flush(
                        text=turn.output_text[:flushed],
                        conversation_id=turn.conversation_id,
                        system_message_id=turn.system_message_id,
                    ),
                )
                self.state = TurnState.BUFFERING
        elif isinstance(event, AttachmentFailure):
            turn.failed_attachments.append(event)
        elif isinstance(event, MetadataEvent):
            self._metadata = event
            turn.conversation_id = event.conversation_id
            turn.system_message_id = event.system_message_id
            turn.user_message_id = event.user_message_id or turn.user_message_id
            turn.source_attributions = list(event.source_attributions)
        else:
            raise TypeError(f"Unsupported chat event: {type(event).__name__}")

    async def finalize(self, turn: StreamingTurn) -> StreamingTurn:
        """Send the single final update and settle the turn's completeness."""
        self.state = TurnState.FINALIZING
        if self._metadata is not None and self._metadata.final_text_message:
            turn.output_text = self._metadata.final_text_message
        turn.complete = self._metadata is not None
        if not turn.complete:
            logger.warning("Chat stream ended without metadata; answer is incomplete")

        text = turn.output_text
        summary = render_failed_attachments(turn.failed_attachments)
        if summary:
            text = f"{text}\n\n{summary}" if text else summary

        await self._send(
            turn,
            Flush(
                text=text,
                final=True,
                has_sources=turn.has_sources,
                conversation_id=turn.conversation_id,
                system_message_id=turn.system_message_id,
            ),
        )
        self._buffer = ""
        self.state = TurnState.DONE
        return turn

    async def _send(self, turn: StreamingTurn, flush: Flush) -> None:
        await self._updater.send_update(flush)
        turn.flush_count += 1


__all__ = [
    "ERROR_MESSAGE",
    "Flush",
    "ResponseUpdater",
    "StreamingResponseAggregator",
    "StreamingTurn",
    "TurnState",
    "render_failed_attachments",
]
