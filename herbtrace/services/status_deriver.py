"""
Status Deriver: event trail → lifecycle status.

    derive_status(events) -> BatchStatus

Newest event wins.  Events are ordered by caller-supplied timestamp,
newest first; when two events share a timestamp the one appended later
wins.  Events with a missing or unparseable timestamp sort as the oldest
(among themselves, append order still decides).

The first event (in that order) whose type maps to a status decides:

    RegulatoryReview + approved  → approved
    RegulatoryReview + rejected  → rejected
    LaboratoryTesting            → tested
    Processing                   → processed
    Collection                   → collected

A RegulatoryReview without a recognised decision does not map and the
scan continues.  No match (or no events) → collected.

The function is total: it never raises, whatever the input.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Iterable

from herbtrace.models.traceability import BatchStatus, EventType, ReviewDecision

# approved / rejected share the top rank; both are terminal
STATUS_RANK: dict[BatchStatus, int] = {
    BatchStatus.COLLECTED: 0,
    BatchStatus.PROCESSED: 1,
    BatchStatus.TESTED: 2,
    BatchStatus.APPROVED: 3,
    BatchStatus.REJECTED: 3,
}

_TYPE_STATUS = {
    EventType.LAB_TESTING: BatchStatus.TESTED,
    EventType.PROCESSING: BatchStatus.PROCESSED,
    EventType.COLLECTION: BatchStatus.COLLECTED,
}

_DECISION_STATUS = {
    ReviewDecision.APPROVED: BatchStatus.APPROVED,
    ReviewDecision.REJECTED: BatchStatus.REJECTED,
}

# Sort key for events without a usable timestamp
_OLDEST = float("-inf")


def parse_timestamp(value) -> float:
    """Return POSIX seconds for an ISO-8601 string, or -inf if unusable.

    Naive timestamps are read as UTC.  A trailing ``Z`` is accepted.
    """
    if not isinstance(value, str) or not value.strip():
        return _OLDEST
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return _OLDEST
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    try:
        return parsed.timestamp()
    except (OverflowError, OSError, ValueError):
        return _OLDEST


def _status_for(event) -> BatchStatus | None:
    kind = EventType.parse(getattr(event, "type", None))
    if kind is None:
        return None
    if kind is EventType.REGULATORY_REVIEW:
        return _DECISION_STATUS.get(getattr(event, "decision", None))
    return _TYPE_STATUS.get(kind)


def newest_first(events: Iterable) -> list:
    """Order events newest → oldest; later append wins on equal timestamps."""
    indexed = list(enumerate(events or ()))
    indexed.sort(
        key=lambda pair: (parse_timestamp(getattr(pair[1], "timestamp", None)), pair[0]),
        reverse=True,
    )
    return [ev for _, ev in indexed]


def derive_status(events: Iterable) -> BatchStatus:
    """Derive the lifecycle status of a batch from its events."""
    try:
        ordered = newest_first(events)
    except TypeError:
        # not iterable
        return BatchStatus.COLLECTED
    for event in ordered:
        status = _status_for(event)
        if status is not None:
            return status
    return BatchStatus.COLLECTED


def status_rank(status: BatchStatus) -> int:
    return STATUS_RANK[BatchStatus(status)]
