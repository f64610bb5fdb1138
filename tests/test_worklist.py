"""Unit tests for herbtrace.services.worklist."""

from herbtrace.models.traceability import (
    Batch,
    Event,
    EventType,
    GenericDetails,
    Performer,
    RegulatoryReviewDetails,
    ReviewDecision,
)
from herbtrace.services import worklist

_STAGES = {
    "collected": ("Collection",),
    "processed": ("Collection", "Processing"),
    "tested": ("Collection", "Processing", "LaboratoryTesting"),
    "approved": ("Collection", "Processing", "LaboratoryTesting", "RegulatoryReview"),
    "rejected": ("Collection", "Processing", "LaboratoryTesting", "RegulatoryReview"),
}


def _batch(key, stage, qr_code=None):
    events = []
    for i, t in enumerate(_STAGES[stage]):
        details = GenericDetails()
        if EventType.parse(t) is EventType.REGULATORY_REVIEW:
            details = RegulatoryReviewDetails(decision=ReviewDecision(stage))
        events.append(Event(
            id=f"{key}-{i}",
            type=t,
            timestamp=f"2025-04-0{i + 1}T00:00:00Z",
            performer=Performer(id="P"),
            details=details,
        ))
    return Batch(key=key, events=tuple(events), qr_code=qr_code)


def _one_of_each():
    return [_batch(f"QR_{s}", s) for s in _STAGES]


def _keys(batches):
    return [b.key for b in batches]


class TestWorklistFor:
    def test_processor_view_is_next_action_only(self):
        assert _keys(worklist.worklist_for(_one_of_each(), "processor", "view")) == ["QR_collected"]

    def test_lab_view(self):
        assert _keys(worklist.worklist_for(_one_of_each(), "lab", "view")) == ["QR_processed"]

    def test_regulator_view_and_edit(self):
        assert _keys(worklist.worklist_for(_one_of_each(), "regulator", "view")) == ["QR_tested"]
        assert _keys(worklist.worklist_for(_one_of_each(), "regulator", "edit")) == ["QR_tested"]

    def test_consumer_sees_approved(self):
        assert _keys(worklist.worklist_for(_one_of_each(), "consumer", "view")) == ["QR_approved"]

    def test_management_sees_all(self):
        assert len(worklist.worklist_for(_one_of_each(), "management", "view")) == 5
        assert worklist.worklist_for(_one_of_each(), "management", "edit") == []

    def test_farmer_view_is_full_can_view_set(self):
        assert len(worklist.worklist_for(_one_of_each(), "farmer", "view")) == 5

    def test_edit_keeps_batches_role_already_acted_on(self):
        """Farmer edit set is {collected}; its own collection does not remove it here."""
        assert _keys(worklist.worklist_for(_one_of_each(), "farmer", "edit")) == ["QR_collected"]

    def test_unknown_role_or_access_is_empty(self):
        assert worklist.worklist_for(_one_of_each(), "pirate", "view") == []
        assert worklist.worklist_for(_one_of_each(), "lab", "delete") == []

    def test_duplicates_collapse_to_first_occurrence(self):
        batches = [
            _batch("QR_A", "collected"),
            _batch("ALIAS_A", "processed", qr_code="QR_A"),
            _batch("QR_B", "collected"),
        ]
        result = worklist.worklist_for(batches, "management", "view")
        assert _keys(result) == ["QR_A", "QR_B"]


class TestAnnotateAndSummary:
    def test_annotate(self):
        entry = worklist.annotate(_batch("QR_X", "processed"), "processor")
        assert entry["qrCode"] == "QR_X"
        assert entry["status"] == "processed"
        assert entry["hasAlreadyActed"] is True
        assert entry["canEdit"] is False
        assert entry["workflowStatus"]["allowedPortals"] == ["lab"]
        assert "events" not in entry

    def test_workflow_summary(self):
        summary = worklist.workflow_summary(_one_of_each() + [_batch("QR_c2", "collected")])
        assert summary["totalBatches"] == 6
        assert summary["statusCounts"] == {
            "collected": 2, "processed": 1, "tested": 1, "approved": 1, "rejected": 1,
        }
        assert summary["portals"]["processor"] == {"view": 2, "edit": 2}
        assert summary["portals"]["consumer"] == {"view": 1, "edit": 0}


class TestRegulatorQueues:
    def test_pending_is_tested_without_review(self):
        assert _keys(worklist.regulator_pending(_one_of_each())) == ["QR_tested"]

    def test_history_counts(self):
        history = worklist.regulator_history(_one_of_each())
        assert _keys(history["batches"]) == ["QR_approved", "QR_rejected"]
        assert history["approved"] == 1
        assert history["rejected"] == 1


def test_timeline_is_oldest_first():
    batch = _batch("QR_T", "tested")
    shuffled = Batch(key=batch.key, events=tuple(reversed(batch.events)))
    assert [e.type for e in worklist.timeline(shuffled)] == [
        "Collection", "Processing", "LaboratoryTesting",
    ]
