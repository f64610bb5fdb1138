"""
Herb Traceability Service
Blueprint helpers shared by the portal and workflow endpoints.
"""

from flask import jsonify, request

from herbtrace.core.exceptions import ValidationError
from herbtrace.models.traceability import AccessType, Role
from herbtrace.services.transition_validator import RejectionCode
from herbtrace.utils.errors import E, api_error

# Workflow rejection → API error code
_REJECTION_CODES = {
    RejectionCode.ACCESS_DENIED: E.ACCESS_DENIED,
    RejectionCode.ALREADY_ACTED: E.ALREADY_ACTED,
    RejectionCode.NO_TRANSITION: E.NO_TRANSITION,
}


def json_body() -> dict:
    """Return the request's JSON object, or raise ValidationError."""
    data = request.get_json(silent=True)
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def parse_role(value):
    """Returns (Role, None) or (None, error_response)."""
    role = Role.parse(value)
    if role is None:
        return None, api_error(
            E.VALIDATION_INVALID,
            f"Unknown portal type '{value}'.",
            details={"validRoles": [r.value for r in Role]},
        )
    return role, None


def parse_access_type(value):
    """Returns (AccessType, None) or (None, error_response).  Default: view."""
    access = AccessType.parse(value or AccessType.VIEW.value)
    if access is None:
        return None, api_error(
            E.VALIDATION_INVALID,
            f"Unknown accessType '{value}'.",
            details={"validAccessTypes": [a.value for a in AccessType]},
        )
    return access, None


def rejection_response(result):
    """Error response for a rejected SubmissionResult.

    Always carries the derived status and workflow info so the portal can
    re-render without another round-trip.
    """
    body = result.to_dict()
    return api_error(
        _REJECTION_CODES[result.decision.code],
        result.decision.reason,
        details={
            "qrCode": body["qrCode"],
            "currentStatus": body["currentStatus"],
            "workflowStatus": body["workflowStatus"],
        },
    )


def accepted_response(result):
    return jsonify(result.to_dict()), 201
