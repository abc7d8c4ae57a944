"""
Typed events produced by the chat backend stream.

A stream yields ``ChatEvent`` values: exactly one of ``TextDelta``,
``AttachmentFailure`` or ``MetadataEvent``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional, Union


@dataclass(frozen=True)
class SourceAttribution:
    title: Optional[str] = None
    snippet: Optional[str] = None
    url: Optional[str] = None
    citation_number: Optional[int] = None

    @classmethod
    def from_api(cls, payload: dict[str, Any]) -> "SourceAttribution":
        return cls(
            title=payload.get("title"),
            snippet=payload.get("snippet"),
            url=payload.get("url"),
            citation_number=payload.get("citationNumber"),
        )

    def to_record(self) -> dict[str, Any]:
        record = {
            "title": self.title,
            "snippet": self.snippet,
            "url": self.url,
            "citationNumber": self.citation_number,
        }
        return {key: value for key, value in record.items() if value is not None}


@dataclass(frozen=True)
class TextDelta:
    """A fragment of the answer text."""

    text: str
    conversation_id: Optional[str] = None
    system_message_id: Optional[str] = None
    user_message_id: Optional[str] = None


@dataclass(frozen=True)
class AttachmentFailure:
    """An attachment the backend could not use."""

    name: str
    status: str = "FAILED"
    error_code: Optional[str] = None
    error_message: Optional[str] = None


@dataclass(frozen=True)
class MetadataEvent:
    """Terminal event carrying the authoritative identifiers of the turn."""

    conversation_id: str
    system_message_id: str
    user_message_id: Optional[str] = None
    final_text_message: Optional[str] = None
    source_attributions: tuple[SourceAttribution, ...] = field(default_factory=tuple)


ChatEvent = Union[TextDelta, AttachmentFailure, MetadataEvent]


__all__ = [
    "AttachmentFailure",
    "ChatEvent",
    "MetadataEvent",
    "SourceAttribution",
    "TextDelta",
]
