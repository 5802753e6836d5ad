"""
Message and redaction schemas.

Message is the raw transcript unit read from disk. SanitizedMessage is what
leaves the machine: content with placeholders plus per-message redaction
counts. SessionSummary aggregates those counts for display and audit.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from pydantic import Field

from vibelog.base_model import StrictModel, WireModel
from vibelog.types import REDACTION_CATEGORIES, JsonDatetime, MessageRole, RedactionCategory

# Raw content as found in transcripts: plain text, a list of content blocks
# (text/image/tool blocks), a single block, or nothing at all.
MessageContent = str | list[Any] | dict[str, Any] | None


class Message(StrictModel):
    """One raw conversation message. Never sent anywhere as-is."""

    role: MessageRole
    content: MessageContent
    timestamp: JsonDatetime


class RedactedItems(WireModel):
    """Number of redactions per category within one message."""

    code_blocks: int = 0
    credentials: int = 0
    paths: int = 0
    urls: int = 0
    emails: int = 0
    env_vars: int = 0

    @property
    def total(self) -> int:
        return sum(self.as_dict().values())

    def as_dict(self) -> dict[RedactionCategory, int]:
        """Counts keyed by category, in reporting order."""
        return {category: getattr(self, category) for category in REDACTION_CATEGORIES}

    @classmethod
    def from_counts(cls, counts: Mapping[str, int]) -> RedactedItems:
        return cls(**{category: counts.get(category, 0) for category in REDACTION_CATEGORIES})


class MessageMetadata(WireModel):
    has_code: bool
    redacted_items: RedactedItems
    original_length: int
    sanitized_length: int


class SanitizedMessage(WireModel):
    """A message with every sensitive span replaced by a placeholder."""

    role: MessageRole
    content: str
    timestamp: str  # ISO-8601, UTC
    metadata: MessageMetadata


class RedactionSummary(WireModel):
    total_redactions: int
    by_type: dict[str, int] = Field(default_factory=dict)


class SessionSummary(WireModel):
    """Audit view of one sanitized session.

    total_redactions always equals the sum of by_type, which in turn equals the
    sum of redacted_items over the summarized messages.
    """

    redaction_summary: RedactionSummary
    context_preserved: bool
    conversation_flow: str
