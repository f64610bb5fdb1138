"""
Batch Blueprint: lookups and the generic event endpoint.

Endpoints:
    GET  /api/v1/batches/<batch_key>            batch with events + workflow info
    GET  /api/v1/batches/<batch_key>/timeline   events oldest → newest
    POST /api/v1/batches/<batch_key>/events     body: {role, ...role payload...}

The generic endpoint serves clients that do not go through a dedicated
portal endpoint.  An authenticated caller may only submit as its own role.
"""

import logging

from flask import Blueprint, jsonify

from herbtrace.blueprints import accepted_response, json_body, parse_role, rejection_response
from herbtrace.core.exceptions import PermissionDenied
from herbtrace.ledger import get_ledger
from herbtrace.models.traceability import Role
from herbtrace.services import submission_service, worklist
from herbtrace.services.identity import current_identity
from herbtrace.services.transition_validator import get_workflow_status

logger = logging.getLogger(__name__)

batch_bp = Blueprint("batch", __name__, url_prefix="/api/v1/batches")


@batch_bp.route("/<batch_key>", methods=["GET"])
def get_batch(batch_key):
    batch = get_ledger().get(batch_key)
    body = batch.to_dict()
    body["workflowStatus"] = get_workflow_status(batch)
    return jsonify(body)


@batch_bp.route("/<batch_key>/timeline", methods=["GET"])
def get_timeline(batch_key):
    batch = get_ledger().get(batch_key)
    events = worklist.timeline(batch)
    return jsonify({
        "qrCode": batch.external_id,
        "status": batch.status.value,
        "events": [ev.to_dict() for ev in events],
        "total": len(events),
    })


@batch_bp.route("/<batch_key>/events", methods=["POST"])
def submit_event(batch_key):
    data = json_body()
    ident = current_identity()
    role_value = data.get("role") or (ident.role if ident else None)
    role, err = parse_role(role_value)
    if err:
        return err
    if ident is not None and Role.parse(ident.role) is not role:
        raise PermissionDenied(ident.role, f"submit events as {role.value}")

    result = submission_service.submit(batch_key, role, data)
    if not result.accepted:
        return rejection_response(result)
    return accepted_response(result)
