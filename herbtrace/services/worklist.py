"""
Worklist queries: which batches does a portal see?

    worklist_for(batches, role, access_type) -> list[Batch]

1. Collapse duplicates by external id (``Batch.external_id``), keeping the
   first occurrence.  The same logical batch can sit under more than one
   ledger key.
2. ``view`` for a working portal (processor, lab, regulator) keeps only the
   batches in the one status that portal acts on next.  Other roles get
   their full ``canView`` set.
3. ``edit`` keeps batches whose status is in the role's ``canEdit`` set.
   Batches the role already acted on are NOT removed here; that check
   happens at submission time.

Also builds the dashboard summary and the regulator's review queues.
"""

from __future__ import annotations

from collections import Counter
from typing import Iterable

from herbtrace.models.traceability import (
    NEXT_ACTION_STATUS,
    PORTAL_PERMISSIONS,
    AccessType,
    Batch,
    BatchStatus,
    EventType,
    Role,
)
from herbtrace.services.portal_policy import has_already_acted
from herbtrace.services.status_deriver import derive_status, newest_first
from herbtrace.services.transition_validator import get_workflow_status


def dedupe_batches(batches: Iterable[Batch]) -> list[Batch]:
    seen: set[str] = set()
    unique: list[Batch] = []
    for batch in batches:
        ext = batch.external_id
        if ext in seen:
            continue
        seen.add(ext)
        unique.append(batch)
    return unique


def _allowed_statuses(role: Role, access: AccessType) -> frozenset:
    if access is AccessType.VIEW and role in NEXT_ACTION_STATUS:
        return frozenset({NEXT_ACTION_STATUS[role]})
    perms = PORTAL_PERMISSIONS[role]
    return perms.can_edit if access is AccessType.EDIT else perms.can_view


def worklist_for(batches: Iterable[Batch], role, access_type="view") -> list[Batch]:
    """Return the batches ``role`` should list for ``access_type``.

    Unknown roles or access types yield an empty list.
    """
    parsed_role = Role.parse(role)
    parsed_access = AccessType.parse(access_type)
    if parsed_role is None or parsed_access is None:
        return []

    allowed = _allowed_statuses(parsed_role, parsed_access)
    return [b for b in dedupe_batches(batches) if derive_status(b.events) in allowed]


def annotate(batch: Batch, role) -> dict:
    """Worklist entry: batch summary plus per-portal workflow hints."""
    parsed_role = Role.parse(role)
    status = derive_status(batch.events)
    entry = batch.to_dict(include_events=False)
    entry["workflowStatus"] = get_workflow_status(status)
    entry["hasAlreadyActed"] = has_already_acted(batch, parsed_role) if parsed_role else False
    entry["canEdit"] = bool(parsed_role) and status in PORTAL_PERMISSIONS[parsed_role].can_edit
    return entry


def workflow_summary(batches: Iterable[Batch]) -> dict:
    """Counts per derived status and per-portal worklist sizes."""
    unique = dedupe_batches(batches)
    by_status = Counter(derive_status(b.events).value for b in unique)
    portals = {}
    for role in Role:
        portals[role.value] = {
            "view": len(worklist_for(unique, role, AccessType.VIEW)),
            "edit": len(worklist_for(unique, role, AccessType.EDIT)),
        }
    return {
        "totalBatches": len(unique),
        "statusCounts": {s.value: by_status.get(s.value, 0) for s in BatchStatus},
        "portals": portals,
    }


def _has_review(batch: Batch) -> bool:
    return any(ev.kind is EventType.REGULATORY_REVIEW for ev in batch.events)


def regulator_pending(batches: Iterable[Batch]) -> list[Batch]:
    """Tested batches that carry no regulatory review yet."""
    return [
        b for b in worklist_for(batches, Role.REGULATOR, AccessType.EDIT)
        if not _has_review(b)
    ]


def regulator_history(batches: Iterable[Batch]) -> dict:
    decided = [
        b for b in dedupe_batches(batches)
        if derive_status(b.events) in (BatchStatus.APPROVED, BatchStatus.REJECTED)
    ]
    approved = sum(1 for b in decided if derive_status(b.events) is BatchStatus.APPROVED)
    return {
        "batches": decided,
        "approved": approved,
        "rejected": len(decided) - approved,
    }


def timeline(batch: Batch) -> list:
    """Events oldest → newest (timestamp, then append order)."""
    return list(reversed(newest_first(batch.events)))
