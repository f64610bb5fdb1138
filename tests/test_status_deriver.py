"""Unit tests for herbtrace.services.status_deriver.

Covers the newest-event-wins rule, tie-breaking by append order, handling
of missing/unparseable timestamps, lenient type labels, and the fact that
derive_status never raises.
"""

import itertools

import pytest

from herbtrace.models.traceability import (
    BatchStatus,
    Event,
    EventType,
    GenericDetails,
    Performer,
    RegulatoryReviewDetails,
    ReviewDecision,
)
from herbtrace.services.status_deriver import (
    derive_status,
    newest_first,
    parse_timestamp,
    status_rank,
)

_ids = itertools.count(1)


def _ev(type_, ts="2025-01-01T00:00:00Z", decision=None):
    """Minimal event; only type, timestamp and decision matter here."""
    if EventType.parse(type_) is EventType.REGULATORY_REVIEW:
        details = RegulatoryReviewDetails(decision=ReviewDecision.parse(decision))
    else:
        details = GenericDetails()
    return Event(
        id=f"EVT-{next(_ids)}",
        type=type_,
        timestamp=ts,
        performer=Performer(id="P-1"),
        details=details,
    )


class TestDeriveStatus:
    def test_no_events_is_collected(self):
        assert derive_status([]) is BatchStatus.COLLECTED
        assert derive_status(None) is BatchStatus.COLLECTED

    def test_full_lifecycle_approved(self):
        events = [
            _ev("Collection", "2025-01-01T08:00:00Z"),
            _ev("Processing", "2025-01-02T08:00:00Z"),
            _ev("LaboratoryTesting", "2025-01-03T08:00:00Z"),
            _ev("RegulatoryReview", "2025-01-04T08:00:00Z", "approved"),
        ]
        assert derive_status(events) is BatchStatus.APPROVED

    def test_rejected_review(self):
        events = [
            _ev("Collection", "2025-01-01T08:00:00Z"),
            _ev("LaboratoryTesting", "2025-01-03T08:00:00Z"),
            _ev("RegulatoryReview", "2025-01-04T08:00:00Z", "rejected"),
        ]
        assert derive_status(events) is BatchStatus.REJECTED

    def test_newest_timestamp_wins_over_append_order(self):
        """A lab event appended last but timestamped earlier does not win."""
        events = [
            _ev("Collection", "2025-01-01T08:00:00Z"),
            _ev("Processing", "2025-01-05T08:00:00Z"),
            _ev("LaboratoryTesting", "2025-01-03T08:00:00Z"),
        ]
        assert derive_status(events) is BatchStatus.PROCESSED

    def test_equal_timestamps_later_append_wins(self):
        ts = "2025-01-02T08:00:00Z"
        assert derive_status([_ev("Processing", ts), _ev("LaboratoryTesting", ts)]) is BatchStatus.TESTED
        assert derive_status([_ev("LaboratoryTesting", ts), _ev("Processing", ts)]) is BatchStatus.PROCESSED

    def test_missing_timestamp_sorts_oldest(self):
        events = [
            _ev("Collection", "2025-01-01T08:00:00Z"),
            _ev("LaboratoryTesting", None),
            _ev("Processing", "2025-01-02T08:00:00Z"),
        ]
        assert derive_status(events) is BatchStatus.PROCESSED

    def test_unparseable_timestamp_sorts_oldest(self):
        events = [
            _ev("Processing", "2025-01-02T08:00:00Z"),
            _ev("LaboratoryTesting", "yesterday afternoon"),
        ]
        assert derive_status(events) is BatchStatus.PROCESSED

    def test_review_without_known_decision_is_skipped(self):
        events = [
            _ev("LaboratoryTesting", "2025-01-03T08:00:00Z"),
            _ev("RegulatoryReview", "2025-01-04T08:00:00Z", "pending"),
        ]
        assert derive_status(events) is BatchStatus.TESTED

    def test_unknown_event_type_is_ignored(self):
        events = [
            _ev("Processing", "2025-01-02T08:00:00Z"),
            _ev("Shipping", "2025-01-09T08:00:00Z"),
        ]
        assert derive_status(events) is BatchStatus.PROCESSED

    @pytest.mark.parametrize("label", ["Laboratory Testing", "laboratory_testing", "LABORATORYTESTING"])
    def test_spaced_and_cased_labels(self, label):
        assert derive_status([_ev("Collection"), _ev(label, "2025-02-01T00:00:00Z")]) is BatchStatus.TESTED

    def test_never_raises_on_garbage(self):
        assert derive_status(42) is BatchStatus.COLLECTED
        assert derive_status([object(), None, "x"]) is BatchStatus.COLLECTED


class TestTimestamps:
    def test_z_suffix_equals_utc_offset(self):
        assert parse_timestamp("2025-01-01T10:00:00Z") == parse_timestamp("2025-01-01T10:00:00+00:00")

    def test_naive_read_as_utc(self):
        assert parse_timestamp("2025-01-01T10:00:00") == parse_timestamp("2025-01-01T11:00:00+01:00")

    @pytest.mark.parametrize("value", [None, "", "   ", "not a date", 1700000000])
    def test_unusable_is_minus_infinity(self, value):
        assert parse_timestamp(value) == float("-inf")

    def test_newest_first_orders_ties_by_append(self):
        a = _ev("Collection", "2025-01-01T00:00:00Z")
        b = _ev("Processing", "2025-01-01T00:00:00Z")
        c = _ev("LaboratoryTesting", None)
        assert newest_first([a, b, c]) == [b, a, c]


def test_status_rank_terminal_statuses_share_top_rank():
    assert status_rank(BatchStatus.COLLECTED) < status_rank(BatchStatus.PROCESSED) < status_rank(BatchStatus.TESTED)
    assert status_rank("approved") == status_rank(BatchStatus.REJECTED)


@pytest.mark.parametrize("decision,terminal", [
    ("approved", BatchStatus.APPROVED),
    ("rejected", BatchStatus.REJECTED),
])
def test_lifecycle_rank_never_decreases(decision, terminal):
    lifecycle = [
        _ev("Collection", "2025-01-01T08:00:00Z"),
        _ev("Processing", "2025-01-02T08:00:00Z"),
        _ev("LaboratoryTesting", "2025-01-03T08:00:00Z"),
        _ev("RegulatoryReview", "2025-01-04T08:00:00Z", decision),
    ]
    ranks = [status_rank(derive_status(lifecycle[:n])) for n in range(1, len(lifecycle) + 1)]
    assert ranks == sorted(ranks)
    assert len(set(ranks)) == len(ranks)
    assert derive_status(lifecycle) is terminal
