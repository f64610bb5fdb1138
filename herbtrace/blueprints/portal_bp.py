"""
Portal Submission Blueprint.

Role-specific endpoints: each one acts as its own portal's role.

Endpoints:
    POST /api/v1/collection/events
         Body: {collectionId, farmer{...}, herb{...}, location{...}}
         Returns: 201 with the new batch (key QR_<collectionId>).

    POST /api/v1/processing/events
    POST /api/v1/lab/events
    POST /api/v1/regulator/review
         Body: {qrCode, ...role payload...}
         Returns: 201 {accepted, qrCode, nextStatus, receipt, batch}
                  403 ERR_ACCESS_DENIED | 409 ERR_ALREADY_ACTED | 409 ERR_NO_TRANSITION
                  (details carry currentStatus + workflowStatus)

    GET  /api/v1/regulator/pending  tested batches awaiting review
    GET  /api/v1/regulator/history  approved / rejected batches

Layer contract:
    - Blueprint: resolve portal, parse body, call submission_service.
    - NO ledger writes here: all appends are owned by submission_service.
    - NO workflow rules here: decisions come from transition_validator.
"""

import logging

from flask import Blueprint, jsonify

from herbtrace.blueprints import accepted_response, json_body, rejection_response
from herbtrace.ledger import get_ledger
from herbtrace.models.traceability import Role
from herbtrace.services import submission_service, worklist
from herbtrace.services.event_factory import batch_key
from herbtrace.services.identity import require_portal

logger = logging.getLogger(__name__)

portal_bp = Blueprint("portal_submission", __name__, url_prefix="/api/v1")
collection_bp = Blueprint("collection", __name__, url_prefix="/api/v1/collection")


def _submit_as(role: Role):
    require_portal(role)
    data = json_body()
    result = submission_service.submit(batch_key(data), role, data)
    if not result.accepted:
        return rejection_response(result)
    return accepted_response(result)


# ── Farmer ─────────────────────────────────────────────────────────────────────


@collection_bp.route("/events", methods=["POST"])
def create_collection():
    """Farmer records a harvest; this creates the batch."""
    require_portal(Role.FARMER)
    result = submission_service.create_batch(json_body(), Role.FARMER)
    return accepted_response(result)


# ── Processor / Lab / Regulator ────────────────────────────────────────────────


@portal_bp.route("/processing/events", methods=["POST"])
def submit_processing():
    return _submit_as(Role.PROCESSOR)


@portal_bp.route("/lab/events", methods=["POST"])
def submit_lab_test():
    return _submit_as(Role.LAB)


@portal_bp.route("/regulator/review", methods=["POST"])
def submit_review():
    """Regulator approves or rejects a tested batch (body.decision)."""
    return _submit_as(Role.REGULATOR)


@portal_bp.route("/regulator/pending", methods=["GET"])
def regulator_pending():
    require_portal(Role.REGULATOR)
    pending = worklist.regulator_pending(get_ledger().scan_all())
    return jsonify({
        "batches": [worklist.annotate(b, Role.REGULATOR) for b in pending],
        "total": len(pending),
    })


@portal_bp.route("/regulator/history", methods=["GET"])
def regulator_history():
    require_portal(Role.REGULATOR)
    history = worklist.regulator_history(get_ledger().scan_all())
    return jsonify({
        "batches": [worklist.annotate(b, Role.REGULATOR) for b in history["batches"]],
        "total": len(history["batches"]),
        "approved": history["approved"],
        "rejected": history["rejected"],
    })
