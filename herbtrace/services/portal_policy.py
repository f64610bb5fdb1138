"""
Portal Access Policy.

Answers two questions against the static PORTAL_PERMISSIONS table:

    check_access(role, status, access_type) -> AccessDecision
    has_already_acted(batch, role)          -> bool

Denials always carry a reason naming the role/status pair; blueprints
return that text verbatim.

Usage:
    from herbtrace.services.portal_policy import check_access

    decision = check_access("lab", batch.status, "edit")
    if not decision.allowed:
        return api_error(E.ACCESS_DENIED, decision.reason)
"""

from __future__ import annotations

from dataclasses import dataclass

from herbtrace.models.traceability import (
    PORTAL_PERMISSIONS,
    ROLE_EVENT_TYPES,
    WORKFLOW_STAGES,
    AccessType,
    Batch,
    BatchStatus,
    Role,
)
from herbtrace.services.status_deriver import derive_status


@dataclass(frozen=True)
class AccessDecision:
    allowed: bool
    reason: str

    def to_dict(self) -> dict:
        return {"allowed": self.allowed, "reason": self.reason}


def check_access(role, status, access_type="view") -> AccessDecision:
    """Decide view/edit access for ``role`` on a batch in ``status``.

    Unknown roles and access types are denied rather than raised, so the
    caller can surface the reason like any other denial.
    """
    parsed_role = Role.parse(role)
    if parsed_role is None:
        return AccessDecision(False, "Invalid portal type")
    perms = PORTAL_PERMISSIONS[parsed_role]

    parsed_access = AccessType.parse(access_type)
    if parsed_access is None:
        return AccessDecision(False, "Invalid access type")

    status = BatchStatus(status)
    if parsed_access is AccessType.VIEW:
        if status in perms.can_view:
            return AccessDecision(True, "Access granted")
        return AccessDecision(
            False, f"{parsed_role.value} portal cannot view batches with status: {status.value}"
        )

    if status in perms.can_edit:
        return AccessDecision(True, "Edit access granted")
    return AccessDecision(
        False, f"{parsed_role.value} portal cannot edit batches with status: {status.value}"
    )


def has_already_acted(batch: Batch, role) -> bool:
    """True iff the batch already holds an event of ``role``'s own type.

    Roles without an event type (consumer, management) never act.
    """
    parsed_role = Role.parse(role)
    event_type = ROLE_EVENT_TYPES.get(parsed_role)
    if event_type is None:
        return False
    return any(ev.kind is event_type for ev in batch.events)


def already_acted_reason(role) -> str:
    label = Role.parse(role)
    name = label.value if label else str(role)
    return (
        f"This batch has already been processed by the {name} portal. "
        "Only view access is allowed."
    )


def get_portal_access_summary(role) -> dict | None:
    """Describe what ``role`` may do, plus the workflow stage table.

    Returns None for an unknown role.
    """
    parsed_role = Role.parse(role)
    if parsed_role is None:
        return None
    perms = PORTAL_PERMISSIONS[parsed_role].to_dict()
    return {
        "portalType": parsed_role.value,
        "description": perms["description"],
        "canCreate": perms["canCreate"],
        "canView": perms["canView"],
        "canEdit": perms["canEdit"],
        "workflowStages": {
            status.value: stage.to_dict() for status, stage in WORKFLOW_STAGES.items()
        },
    }


def describe_access(batch: Batch, role, access_type="view") -> dict:
    """Access check for one batch as the portals display it."""
    status = derive_status(batch.events)
    decision = check_access(role, status, access_type)
    return {
        "allowed": decision.allowed,
        "reason": decision.reason,
        "hasAlreadyActed": has_already_acted(batch, role),
        "derivedStatus": status.value,
    }
