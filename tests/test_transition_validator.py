"""Unit tests for herbtrace.services.transition_validator.

Check order under test:
    terminal status  → NO_TRANSITION   (whoever asks)
    already acted    → ALREADY_ACTED   (whatever the status)
    no edit access   → ACCESS_DENIED
    table lookup     → NO_TRANSITION (e.g. review without a decision)
"""

import pytest

from herbtrace.models.traceability import (
    Batch,
    BatchStatus,
    Event,
    EventType,
    GenericDetails,
    Performer,
    RegulatoryReviewDetails,
    ReviewDecision,
    Role,
)
from herbtrace.services.transition_validator import (
    RejectionCode,
    get_workflow_status,
    next_status_for,
    validate_submission,
)


def _batch(*types, decision=None):
    events = []
    for i, t in enumerate(types):
        details = (
            RegulatoryReviewDetails(decision=ReviewDecision.parse(decision))
            if EventType.parse(t) is EventType.REGULATORY_REVIEW
            else GenericDetails()
        )
        events.append(Event(
            id=f"EVT-{i}",
            type=t,
            timestamp=f"2025-03-0{i + 1}T00:00:00Z",
            performer=Performer(id="P"),
            details=details,
        ))
    return Batch(key="QR_V-1", events=tuple(events))


_COLLECTED = ("Collection",)
_PROCESSED = ("Collection", "Processing")
_TESTED = ("Collection", "Processing", "LaboratoryTesting")
_REVIEWED = ("Collection", "Processing", "LaboratoryTesting", "RegulatoryReview")


class TestHappyPath:
    def test_processor_on_collected(self):
        d = validate_submission(_batch(*_COLLECTED), "processor")
        assert d.valid is True
        assert d.current_status is BatchStatus.COLLECTED
        assert d.next_status is BatchStatus.PROCESSED
        assert d.code is None

    def test_lab_on_processed(self):
        d = validate_submission(_batch(*_PROCESSED), Role.LAB)
        assert d.valid is True
        assert d.next_status is BatchStatus.TESTED

    @pytest.mark.parametrize("decision,expected", [
        ("approved", BatchStatus.APPROVED),
        ("rejected", BatchStatus.REJECTED),
        ("Rejected", BatchStatus.REJECTED),
    ])
    def test_regulator_decision_picks_terminal_status(self, decision, expected):
        d = validate_submission(_batch(*_TESTED), "regulator", {"decision": decision})
        assert d.valid is True
        assert d.next_status is expected


class TestRejections:
    def test_lab_cannot_skip_processing(self):
        d = validate_submission(_batch(*_COLLECTED), "lab")
        assert d.valid is False
        assert d.code is RejectionCode.ACCESS_DENIED
        assert d.reason == "lab portal cannot edit batches with status: collected"

    def test_processor_twice_is_already_acted(self):
        d = validate_submission(_batch(*_PROCESSED), "processor")
        assert d.code is RejectionCode.ALREADY_ACTED
        assert d.current_status is BatchStatus.PROCESSED

    def test_already_acted_wins_over_access(self):
        """Processor on a tested batch: it acted earlier, so ALREADY_ACTED."""
        d = validate_submission(_batch(*_TESTED), "processor")
        assert d.code is RejectionCode.ALREADY_ACTED

    def test_farmer_already_acted_on_own_collection(self):
        d = validate_submission(_batch(*_COLLECTED), "farmer")
        assert d.code is RejectionCode.ALREADY_ACTED

    @pytest.mark.parametrize("role", [r.value for r in Role])
    @pytest.mark.parametrize("decision", ["approved", "rejected"])
    def test_terminal_is_always_no_transition(self, role, decision):
        d = validate_submission(_batch(*_REVIEWED, decision=decision), role, {"decision": "approved"})
        assert d.valid is False
        assert d.code is RejectionCode.NO_TRANSITION

    def test_review_without_decision(self):
        d = validate_submission(_batch(*_TESTED), "regulator", {})
        assert d.code is RejectionCode.NO_TRANSITION
        assert "decision" in d.reason

    def test_management_has_no_edit_rights(self):
        d = validate_submission(_batch(*_COLLECTED), "management")
        assert d.code is RejectionCode.ACCESS_DENIED

    def test_unknown_role(self):
        d = validate_submission(_batch(*_COLLECTED), "pirate")
        assert d.code is RejectionCode.ACCESS_DENIED
        assert d.reason == "Invalid portal type"

    def test_to_dict(self):
        body = validate_submission(_batch(*_COLLECTED), "lab").to_dict()
        assert body["valid"] is False
        assert body["currentStatus"] == "collected"
        assert body["nextStatus"] is None
        assert body["code"] == "access_denied"


class TestTransitionTable:
    def test_only_listed_portal_transitions(self):
        status, reason = next_status_for(BatchStatus.COLLECTED, Role.LAB)
        assert status is None
        assert reason == "Only processor portals can process batches with status: collected"

    def test_terminal_has_no_next(self):
        status, reason = next_status_for(BatchStatus.REJECTED, Role.REGULATOR, {"decision": "approved"})
        assert status is None
        assert "no further transitions" in reason


class TestWorkflowStatus:
    def test_tested_stage_offers_both_outcomes(self):
        info = get_workflow_status(_batch(*_TESTED))
        assert info == {
            "currentStage": "tested",
            "description": "Ready for regulatory review",
            "nextStage": "approved|rejected",
            "allowedPortals": ["regulator"],
            "isComplete": False,
        }

    def test_approved_is_complete(self):
        info = get_workflow_status(BatchStatus.APPROVED)
        assert info["isComplete"] is True
        assert info["nextStage"] is None
        assert info["allowedPortals"] == ["consumer"]

    def test_rejected_has_no_portals(self):
        info = get_workflow_status("rejected")
        assert info["allowedPortals"] == []
        assert info["isComplete"] is True
