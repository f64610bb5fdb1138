"""
Transition Validator: may this role submit against this batch now?

    collected ──processor──▶ processed ──lab──▶ tested ──regulator──▶ approved
                                                                 └──▶ rejected

approved and rejected are terminal.

validate_submission() is a pure decision function: it reads the batch,
never mutates it, and never raises for a workflow rejection.  Checks run
in this order and the first failing one decides:

    1. terminal status          → NO_TRANSITION
    2. role already has its own
       event type on the batch  → ALREADY_ACTED
    3. edit access for status   → ACCESS_DENIED
    4. transition table entry
       (incl. regulator decision) → NO_TRANSITION

Terminal batches report NO_TRANSITION for every role, and a repeated
submission reports ALREADY_ACTED whatever the batch's status has moved on
to; the access check alone would mask both as ACCESS_DENIED.

Usage:
    from herbtrace.services.transition_validator import validate_submission

    decision = validate_submission(batch, "processor", payload)
    if decision.valid:
        next_status = decision.next_status
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from herbtrace.models.traceability import (
    WORKFLOW_STAGES,
    AccessType,
    Batch,
    BatchStatus,
    ReviewDecision,
    Role,
)
from herbtrace.services.portal_policy import (
    already_acted_reason,
    check_access,
    has_already_acted,
)
from herbtrace.services.status_deriver import derive_status


class RejectionCode(str, Enum):
    ACCESS_DENIED = "access_denied"
    ALREADY_ACTED = "already_acted"
    NO_TRANSITION = "no_transition"


@dataclass(frozen=True)
class SubmissionDecision:
    valid: bool
    current_status: BatchStatus
    next_status: BatchStatus | None = None
    code: RejectionCode | None = None
    reason: str = "Submission valid"

    def to_dict(self) -> dict:
        return {
            "valid": self.valid,
            "currentStatus": self.current_status.value,
            "nextStatus": self.next_status.value if self.next_status else None,
            "code": self.code.value if self.code else None,
            "reason": self.reason,
        }


def _reject(current: BatchStatus, code: RejectionCode, reason: str) -> SubmissionDecision:
    return SubmissionDecision(valid=False, current_status=current, code=code, reason=reason)


def _decision_from(payload) -> ReviewDecision | None:
    if not isinstance(payload, dict):
        return None
    return ReviewDecision.parse(payload.get("decision"))


def next_status_for(current: BatchStatus, role: Role, payload=None) -> tuple[BatchStatus | None, str | None]:
    """Look up the transition table.

    Returns:
        (next_status, None) when (current, role) has an entry.
        (None, reason) otherwise.
    """
    stage = WORKFLOW_STAGES.get(current)
    if stage is None or stage.next_status is None:
        return None, f"Batch is {current.value}; no further transitions are allowed"
    if role not in stage.allowed_portals:
        portals = ", ".join(r.value for r in stage.allowed_portals)
        return None, f"Only {portals} portals can process batches with status: {current.value}"
    if current is BatchStatus.TESTED:
        decision = _decision_from(payload)
        if decision is None:
            return None, "Regulatory review requires a decision of 'approved' or 'rejected'"
        return BatchStatus(decision.value), None
    return stage.next_status, None


def validate_submission(batch: Batch, role, payload=None) -> SubmissionDecision:
    """Decide whether ``role`` may append its event to ``batch``."""
    current = derive_status(batch.events)

    parsed_role = Role.parse(role)
    if parsed_role is None:
        return _reject(current, RejectionCode.ACCESS_DENIED, "Invalid portal type")

    if current.is_terminal:
        return _reject(
            current,
            RejectionCode.NO_TRANSITION,
            f"Batch is {current.value}; no further transitions are allowed",
        )

    if has_already_acted(batch, parsed_role):
        return _reject(current, RejectionCode.ALREADY_ACTED, already_acted_reason(parsed_role))

    access = check_access(parsed_role, current, AccessType.EDIT)
    if not access.allowed:
        return _reject(current, RejectionCode.ACCESS_DENIED, access.reason)

    next_status, reason = next_status_for(current, parsed_role, payload)
    if next_status is None:
        return _reject(current, RejectionCode.NO_TRANSITION, reason)

    return SubmissionDecision(valid=True, current_status=current, next_status=next_status)


def get_workflow_status(batch_or_status) -> dict:
    """Stage info for the batch's derived status (or a status given directly)."""
    if isinstance(batch_or_status, Batch):
        status = derive_status(batch_or_status.events)
    else:
        status = BatchStatus(batch_or_status)
    stage = WORKFLOW_STAGES[status]
    next_stage = stage.next_status.value if stage.next_status else None
    if status is BatchStatus.TESTED:
        next_stage = "approved|rejected"
    return {
        "currentStage": status.value,
        "description": stage.description,
        "nextStage": next_stage,
        "allowedPortals": [r.value for r in stage.allowed_portals],
        "isComplete": status.is_terminal,
    }
