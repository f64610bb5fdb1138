"""
Submission Service: the only writer of workflow events.

    submit(batch_key, role, payload)  -> SubmissionResult
    create_batch(payload, role)       -> SubmissionResult

``submit`` runs the whole read → validate → append sequence under the
batch's ledger lock, and additionally pins the append to the event count
it validated against (``expected_version``).  A second writer on the same
key, whether in this process or in another one sharing the database or
ledger backend, cannot slip an event in between.

Layer contract:
    - Blueprints: parse the request, call this service, map the result.
    - This service: take the lock, decide, build the event, append, log.
    - Decision functions (transition_validator etc.) stay pure.

Returns SubmissionResult for both outcomes.  Raises only for conditions
that are not workflow decisions: ValidationError (malformed payload),
NotFoundError, ConflictError, PermissionDenied, StorageUnavailable,
ConcurrentWriteError.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from herbtrace.core.exceptions import ConflictError, PermissionDenied
from herbtrace.ledger.facade import AppendReceipt, LedgerFacade, get_ledger
from herbtrace.models.traceability import PORTAL_PERMISSIONS, Batch, BatchStatus, Role
from herbtrace.services.event_factory import build_collection_event, build_event, collection_key
from herbtrace.services.transition_validator import (
    SubmissionDecision,
    get_workflow_status,
    validate_submission,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SubmissionResult:
    accepted: bool
    batch_key: str
    decision: SubmissionDecision
    batch: Batch
    receipt: AppendReceipt | None = None

    @property
    def next_status(self) -> BatchStatus | None:
        return self.decision.next_status

    def to_dict(self) -> dict:
        out = {
            "accepted": self.accepted,
            "qrCode": self.batch.external_id,
            "currentStatus": self.batch.status.value,
            "workflowStatus": get_workflow_status(self.batch),
        }
        if self.accepted:
            out["nextStatus"] = self.decision.next_status.value
            out["receipt"] = self.receipt.to_dict() if self.receipt else None
            out["batch"] = self.batch.to_dict()
        else:
            out["reason"] = self.decision.reason
            out["code"] = self.decision.code.value
        return out


def submit(batch_key: str, role, payload: dict, *, ledger: LedgerFacade | None = None) -> SubmissionResult:
    """Validate and, if allowed, append ``role``'s event to ``batch_key``.

    The batch is looked up and the workflow decision taken before the
    payload is parsed: an unknown key is a NotFoundError and a disallowed
    submission is a rejection, whatever the payload holds.

    Raises:
        NotFoundError: unknown batch key.
        ValidationError: the submission is allowed but its payload is malformed.
        StorageUnavailable: even the fallback store refused the write.
    """
    ledger = ledger or get_ledger()
    parsed = Role.parse(role)
    role_name = parsed.value if parsed else str(role)
    log_extra = {"batch_key": batch_key, "role": role_name}

    with ledger.lock(batch_key):
        batch = ledger.get(batch_key)
        decision = validate_submission(batch, role_name, payload)
        if not decision.valid:
            logger.info(
                "Submission rejected: %s on %s (%s): %s",
                role_name, batch_key, decision.code.value, decision.reason,
                extra=log_extra,
            )
            return SubmissionResult(False, batch_key, decision, batch)

        event = build_event(parsed, payload)
        log_extra["event_type"] = event.type
        receipt = ledger.append(
            batch_key, event,
            expected_version=len(batch.events),
            qr_code=batch.qr_code,
        )
        updated = Batch(
            key=batch.key,
            events=batch.events + (event,),
            last_updated=receipt.last_updated,
            qr_code=batch.qr_code,
        )

    logger.info(
        "Submission accepted: %s on %s %s → %s (mode=%s, write #%d)",
        role_name, batch_key, decision.current_status.value, decision.next_status.value,
        receipt.mode, receipt.write_number,
        extra={**log_extra, "ledger_mode": receipt.mode},
    )
    return SubmissionResult(True, batch_key, decision, updated, receipt)


def create_batch(payload: dict, role=Role.FARMER, *, ledger: LedgerFacade | None = None) -> SubmissionResult:
    """Start a new batch from a collection payload.

    The batch key is ``QR_<collectionId>``.

    Raises:
        PermissionDenied: role has no create rights.
        ConflictError: the key already exists.
        ValidationError: malformed collection payload.
    """
    parsed = Role.parse(role)
    if parsed is None or not PORTAL_PERMISSIONS[parsed].can_create:
        raise PermissionDenied(parsed.value if parsed else str(role), "create batches")

    ledger = ledger or get_ledger()
    key = collection_key(payload)
    event = build_collection_event(payload)

    with ledger.lock(key):
        if ledger.exists(key):
            raise ConflictError("Batch", "qrCode", key)
        receipt = ledger.append(key, event, expected_version=0)
        batch = Batch(key=key, events=(event,), last_updated=receipt.last_updated)

    logger.info(
        "Batch created: %s by %s (mode=%s)", key, event.performer.name, receipt.mode,
        extra={"batch_key": key, "role": parsed.value, "event_type": event.type,
               "ledger_mode": receipt.mode},
    )
    decision = SubmissionDecision(
        valid=True, current_status=BatchStatus.COLLECTED, next_status=BatchStatus.COLLECTED,
    )
    return SubmissionResult(True, key, decision, batch, receipt)
