"""
Session summary builder - aggregates sanitized messages for preview and audit.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence

from pydantic import TypeAdapter

from vibelog.schemas.messages import RedactedItems, RedactionSummary, SanitizedMessage, SessionSummary
from vibelog.schemas.sessions import ApiSession
from vibelog.types import REDACTION_CATEGORIES

__all__ = ['count_total_redactions', 'create_session_summary', 'merge_redactions', 'redaction_breakdown']

logger = logging.getLogger(__name__)


def merge_redactions(items: Iterable[RedactedItems]) -> dict[str, int]:
    """Sum per-message redaction counts into one by-type map (all six categories present)."""
    totals = dict.fromkeys(REDACTION_CATEGORIES, 0)
    for redacted in items:
        for category, count in redacted.as_dict().items():
            totals[category] += count
    return totals


def create_session_summary(messages: Sequence[SanitizedMessage]) -> SessionSummary:
    """
    Build the audit summary for one session's sanitized messages.

    conversation_flow holds one line per message, in order. Line breaks inside a
    message are folded into spaces so the line count always equals the message
    count.
    """
    by_type = merge_redactions(message.metadata.redacted_items for message in messages)
    flow = '\n'.join(' '.join(message.content.splitlines()) for message in messages)
    return SessionSummary(
        redaction_summary=RedactionSummary(total_redactions=sum(by_type.values()), by_type=by_type),
        context_preserved=True,
        conversation_flow=flow,
    )


_MESSAGE_LIST = TypeAdapter(list[SanitizedMessage])


def _messages_from_payload(session: ApiSession) -> list[SanitizedMessage]:
    return _MESSAGE_LIST.validate_json(session.data.message_summary)


def redaction_breakdown(sessions: Sequence[ApiSession]) -> dict[str, int]:
    """Per-type redaction counts across sanitized wire payloads.

    Payloads whose messageSummary cannot be decoded are skipped.
    """
    items: list[RedactedItems] = []
    for session in sessions:
        try:
            items.extend(message.metadata.redacted_items for message in _messages_from_payload(session))
        except ValueError as e:
            logger.debug('Skipping unreadable message summary: %s', e)
    return merge_redactions(items)


def count_total_redactions(sessions: Sequence[ApiSession]) -> int:
    return sum(redaction_breakdown(sessions).values())
