"""
Workflow Blueprint: portal worklists and access checks.

Endpoints:
    GET  /api/v1/workflow/batches/<role>?accessType=view|edit
         Worklist for a portal, deduplicated by QR code.
    GET  /api/v1/workflow/access/<role>/<batch_key>?accessType=view|edit
         {allowed, reason, hasAlreadyActed, derivedStatus, canEdit, batch?}
    POST /api/v1/workflow/validate/<role>/<batch_key>
         Dry-run of a submission; never appends.
    GET  /api/v1/workflow/summary
    GET  /api/v1/workflow/portals/<role>

Unknown role or accessType → 400 ERR_VALIDATION_INVALID.
"""

import logging

from flask import Blueprint, jsonify, request

from herbtrace.blueprints import json_body, parse_access_type, parse_role
from herbtrace.ledger import get_ledger
from herbtrace.models.traceability import AccessType
from herbtrace.services import worklist
from herbtrace.services.portal_policy import check_access, describe_access, get_portal_access_summary
from herbtrace.services.transition_validator import get_workflow_status, validate_submission

logger = logging.getLogger(__name__)

workflow_bp = Blueprint("workflow", __name__, url_prefix="/api/v1/workflow")


@workflow_bp.route("/batches/<role>", methods=["GET"])
def list_batches(role):
    parsed, err = parse_role(role)
    if err:
        return err
    access, err = parse_access_type(request.args.get("accessType"))
    if err:
        return err

    batches = worklist.worklist_for(get_ledger().scan_all(), parsed, access)
    return jsonify({
        "portalType": parsed.value,
        "accessType": access.value,
        "batches": [worklist.annotate(b, parsed) for b in batches],
        "total": len(batches),
    })


@workflow_bp.route("/access/<role>/<batch_key>", methods=["GET"])
def check_batch_access(role, batch_key):
    parsed, err = parse_role(role)
    if err:
        return err
    access, err = parse_access_type(request.args.get("accessType"))
    if err:
        return err

    batch = get_ledger().get(batch_key)
    result = describe_access(batch, parsed, access)
    result["qrCode"] = batch.external_id
    result["canEdit"] = check_access(parsed, batch.status, AccessType.EDIT).allowed
    if result["allowed"]:
        result["batch"] = batch.to_dict()
    return jsonify(result)


@workflow_bp.route("/validate/<role>/<batch_key>", methods=["POST"])
def validate(role, batch_key):
    """Would ``role``'s submission be accepted right now?"""
    parsed, err = parse_role(role)
    if err:
        return err
    batch = get_ledger().get(batch_key)
    decision = validate_submission(batch, parsed, json_body())
    body = decision.to_dict()
    body["qrCode"] = batch.external_id
    body["workflowStatus"] = get_workflow_status(batch)
    return jsonify(body)


@workflow_bp.route("/summary", methods=["GET"])
def summary():
    return jsonify(worklist.workflow_summary(get_ledger().scan_all()))


@workflow_bp.route("/portals/<role>", methods=["GET"])
def portal_summary(role):
    parsed, err = parse_role(role)
    if err:
        return err
    return jsonify(get_portal_access_summary(parsed))
