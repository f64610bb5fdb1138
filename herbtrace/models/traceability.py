"""
Herb batch traceability: domain types and workflow tables.

A Batch is an append-only list of Events stored under one ledger key.
Its lifecycle status is never stored as truth: it is derived from the
event list on every read (see ``herbtrace.services.status_deriver``).

Event payloads are a tagged union keyed by ``Event.type``:

    Collection         → CollectionDetails
    Processing         → ProcessingDetails
    LaboratoryTesting  → LabTestingDetails
    RegulatoryReview   → RegulatoryReviewDetails
    anything else      → GenericDetails (kept verbatim so it round-trips)

Serialised form is camelCase JSON, the shape the portals send and read.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union

from herbtrace.core.exceptions import CorruptedRecordError


# ═════════════════════════════════════════════════════════════════════════════
# Enums
# ═════════════════════════════════════════════════════════════════════════════

class Role(str, Enum):
    FARMER = "farmer"
    PROCESSOR = "processor"
    LAB = "lab"
    REGULATOR = "regulator"
    CONSUMER = "consumer"
    MANAGEMENT = "management"

    @classmethod
    def parse(cls, value: Any) -> "Role | None":
        """Return the Role for ``value`` or None if it is not a known role."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return None


class BatchStatus(str, Enum):
    COLLECTED = "collected"
    PROCESSED = "processed"
    TESTED = "tested"
    APPROVED = "approved"
    REJECTED = "rejected"

    @property
    def is_terminal(self) -> bool:
        return self in (BatchStatus.APPROVED, BatchStatus.REJECTED)


class AccessType(str, Enum):
    VIEW = "view"
    EDIT = "edit"

    @classmethod
    def parse(cls, value: Any) -> "AccessType | None":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return None


_LABEL_NOISE = re.compile(r"[\s_\-]+")


class EventType(str, Enum):
    COLLECTION = "Collection"
    PROCESSING = "Processing"
    LAB_TESTING = "LaboratoryTesting"
    REGULATORY_REVIEW = "RegulatoryReview"

    @classmethod
    def parse(cls, label: Any) -> "EventType | None":
        """Map a stored type label to an EventType, tolerating spacing/case.

        Older portals wrote "Laboratory Testing" and "Regulatory Review";
        both resolve to the same member as the compact spelling.
        """
        if isinstance(label, cls):
            return label
        if not isinstance(label, str):
            return None
        key = _LABEL_NOISE.sub("", label).lower()
        return _EVENT_TYPE_BY_KEY.get(key)


_EVENT_TYPE_BY_KEY = {m.value.lower(): m for m in EventType}


class ReviewDecision(str, Enum):
    APPROVED = "approved"
    REJECTED = "rejected"

    @classmethod
    def parse(cls, value: Any) -> "ReviewDecision | None":
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            return None
        try:
            return cls(value.strip().lower())
        except ValueError:
            return None


# ═════════════════════════════════════════════════════════════════════════════
# Workflow tables
# ═════════════════════════════════════════════════════════════════════════════

_ALL_STATUSES = frozenset(BatchStatus)


@dataclass(frozen=True)
class PortalPermission:
    """One row of the portal access table."""
    can_create: bool
    can_view: frozenset
    can_edit: frozenset
    description: str

    def to_dict(self) -> dict:
        order = list(BatchStatus)
        return {
            "canCreate": self.can_create,
            "canView": [s.value for s in order if s in self.can_view],
            "canEdit": [s.value for s in order if s in self.can_edit],
            "description": self.description,
        }


PORTAL_PERMISSIONS: dict[Role, PortalPermission] = {
    Role.FARMER: PortalPermission(
        can_create=True,
        can_view=_ALL_STATUSES,
        can_edit=frozenset({BatchStatus.COLLECTED}),
        description="Can create and edit collected batches",
    ),
    Role.PROCESSOR: PortalPermission(
        can_create=False,
        can_view=_ALL_STATUSES,
        can_edit=frozenset({BatchStatus.COLLECTED}),
        description="Can process collected batches",
    ),
    Role.LAB: PortalPermission(
        can_create=False,
        can_view=_ALL_STATUSES,
        can_edit=frozenset({BatchStatus.PROCESSED}),
        description="Can test processed batches",
    ),
    Role.REGULATOR: PortalPermission(
        can_create=False,
        can_view=frozenset({BatchStatus.TESTED, BatchStatus.APPROVED, BatchStatus.REJECTED}),
        can_edit=frozenset({BatchStatus.TESTED}),
        description="Can review tested batches",
    ),
    Role.CONSUMER: PortalPermission(
        can_create=False,
        can_view=frozenset({BatchStatus.APPROVED}),
        can_edit=frozenset(),
        description="Can view approved batches only",
    ),
    Role.MANAGEMENT: PortalPermission(
        can_create=False,
        can_view=_ALL_STATUSES,
        can_edit=frozenset(),
        description="Can view all batches for monitoring",
    ),
}


@dataclass(frozen=True)
class WorkflowStage:
    next_status: BatchStatus | None
    allowed_portals: tuple
    description: str

    def to_dict(self) -> dict:
        return {
            "nextStage": self.next_status.value if self.next_status else None,
            "allowedPortals": [r.value for r in self.allowed_portals],
            "description": self.description,
        }


WORKFLOW_STAGES: dict[BatchStatus, WorkflowStage] = {
    BatchStatus.COLLECTED: WorkflowStage(
        BatchStatus.PROCESSED, (Role.PROCESSOR,), "Ready for processing",
    ),
    BatchStatus.PROCESSED: WorkflowStage(
        BatchStatus.TESTED, (Role.LAB,), "Ready for laboratory testing",
    ),
    # nextStage for "tested" depends on the review decision
    BatchStatus.TESTED: WorkflowStage(
        BatchStatus.APPROVED, (Role.REGULATOR,), "Ready for regulatory review",
    ),
    BatchStatus.APPROVED: WorkflowStage(
        None, (Role.CONSUMER,), "Approved for consumer access",
    ),
    BatchStatus.REJECTED: WorkflowStage(None, (), "Rejected by regulator"),
}

# Each acting role owns exactly one event type.
ROLE_EVENT_TYPES: dict[Role, EventType] = {
    Role.FARMER: EventType.COLLECTION,
    Role.PROCESSOR: EventType.PROCESSING,
    Role.LAB: EventType.LAB_TESTING,
    Role.REGULATOR: EventType.REGULATORY_REVIEW,
}

# The single status each working portal acts on next (dashboard view).
NEXT_ACTION_STATUS: dict[Role, BatchStatus] = {
    Role.PROCESSOR: BatchStatus.COLLECTED,
    Role.LAB: BatchStatus.PROCESSED,
    Role.REGULATOR: BatchStatus.TESTED,
}


# ═════════════════════════════════════════════════════════════════════════════
# Event payload variants
# ═════════════════════════════════════════════════════════════════════════════

def _clean(d: dict) -> dict:
    return {k: v for k, v in d.items() if v is not None}


@dataclass(frozen=True)
class Performer:
    id: str
    name: str | None = None
    role: str | None = None
    certification: str | None = None
    contact: str | None = None

    def to_dict(self) -> dict:
        return _clean({
            "id": self.id,
            "name": self.name,
            "role": self.role,
            "certification": self.certification,
            "contact": self.contact,
        })

    @classmethod
    def from_dict(cls, data: dict) -> "Performer":
        return cls(
            id=str(data.get("id") or "unknown"),
            name=data.get("name"),
            role=data.get("role"),
            certification=data.get("certification"),
            contact=data.get("contact"),
        )


@dataclass(frozen=True)
class Location:
    address: str | None = None
    latitude: float | None = None
    longitude: float | None = None

    def to_dict(self) -> dict:
        return _clean({
            "address": self.address,
            "latitude": self.latitude,
            "longitude": self.longitude,
        })

    @classmethod
    def from_dict(cls, data: dict | None) -> "Location | None":
        if not data:
            return None
        return cls(
            address=data.get("address"),
            latitude=data.get("latitude"),
            longitude=data.get("longitude"),
        )


@dataclass(frozen=True)
class CollectionDetails:
    botanical_name: str | None = None
    common_name: str | None = None
    quantity: float | None = None
    unit: str = "kg"
    collection_method: str | None = None
    part_used: str | None = None
    notes: str | None = None

    def to_dict(self) -> dict:
        return _clean({
            "botanicalName": self.botanical_name,
            "commonName": self.common_name,
            "quantity": self.quantity,
            "unit": self.unit,
            "collectionMethod": self.collection_method,
            "partUsed": self.part_used,
            "notes": self.notes,
        })

    @classmethod
    def from_dict(cls, data: dict) -> "CollectionDetails":
        return cls(
            botanical_name=data.get("botanicalName"),
            common_name=data.get("commonName"),
            quantity=data.get("quantity"),
            unit=data.get("unit") or "kg",
            collection_method=data.get("collectionMethod"),
            part_used=data.get("partUsed"),
            notes=data.get("notes"),
        )


@dataclass(frozen=True)
class ProcessingDetails:
    method: str | None = None
    equipment: str | None = None
    temperature: float | None = None
    duration_hours: float | None = None
    notes: str | None = None
    quality: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return _clean({
            "method": self.method,
            "equipment": self.equipment,
            "temperature": self.temperature,
            "durationHours": self.duration_hours,
            "notes": self.notes,
            "quality": dict(self.quality) or None,
        })

    @classmethod
    def from_dict(cls, data: dict) -> "ProcessingDetails":
        return cls(
            method=data.get("method"),
            equipment=data.get("equipment"),
            temperature=data.get("temperature"),
            duration_hours=data.get("durationHours"),
            notes=data.get("notes"),
            quality=dict(data.get("quality") or {}),
        )


@dataclass(frozen=True)
class LabTestingDetails:
    test_id: str | None = None
    results: dict = field(default_factory=dict)
    certificate: dict = field(default_factory=dict)
    notes: str | None = None

    def to_dict(self) -> dict:
        return _clean({
            "testId": self.test_id,
            "results": dict(self.results),
            "certificate": dict(self.certificate) or None,
            "notes": self.notes,
        })

    @classmethod
    def from_dict(cls, data: dict) -> "LabTestingDetails":
        return cls(
            test_id=data.get("testId"),
            results=dict(data.get("results") or {}),
            certificate=dict(data.get("certificate") or {}),
            notes=data.get("notes"),
        )


@dataclass(frozen=True)
class RegulatoryReviewDetails:
    """Regulator's verdict.

    ``decision`` is None when a stored record carries a value outside
    approved/rejected; such a review does not move the derived status.
    """
    decision: ReviewDecision | None
    reason: str | None = None
    review_id: str | None = None

    def to_dict(self) -> dict:
        return _clean({
            "decision": self.decision.value if self.decision else None,
            "reason": self.reason,
            "reviewId": self.review_id,
        })

    @classmethod
    def from_dict(cls, data: dict) -> "RegulatoryReviewDetails":
        return cls(
            decision=ReviewDecision.parse(data.get("decision")),
            reason=data.get("reason"),
            review_id=data.get("reviewId"),
        )


@dataclass(frozen=True)
class GenericDetails:
    data: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return dict(self.data)

    @classmethod
    def from_dict(cls, data: dict) -> "GenericDetails":
        return cls(data=dict(data))


EventDetails = Union[
    CollectionDetails,
    ProcessingDetails,
    LabTestingDetails,
    RegulatoryReviewDetails,
    GenericDetails,
]

DETAILS_BY_TYPE: dict[EventType, type] = {
    EventType.COLLECTION: CollectionDetails,
    EventType.PROCESSING: ProcessingDetails,
    EventType.LAB_TESTING: LabTestingDetails,
    EventType.REGULATORY_REVIEW: RegulatoryReviewDetails,
}


# ═════════════════════════════════════════════════════════════════════════════
# Event & Batch
# ═════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class Event:
    """One immutable custody fact.

    ``type`` keeps the label as written so unknown types round-trip;
    ``kind`` is the parsed EventType (None when unrecognised).
    ``timestamp`` is caller-supplied ISO-8601 text and may be missing.
    """
    id: str
    type: str
    timestamp: str | None
    performer: Performer
    details: EventDetails
    location: Location | None = None

    @property
    def kind(self) -> EventType | None:
        return EventType.parse(self.type)

    @property
    def decision(self) -> ReviewDecision | None:
        if isinstance(self.details, RegulatoryReviewDetails):
            return self.details.decision
        return None

    def to_dict(self) -> dict:
        out = {
            "id": self.id,
            "type": self.type,
            "timestamp": self.timestamp,
            "performer": self.performer.to_dict(),
            "details": self.details.to_dict(),
        }
        if self.location is not None:
            out["location"] = self.location.to_dict()
        return out

    @classmethod
    def from_dict(cls, data: Any) -> "Event":
        """Decode a stored event.

        Raises:
            CorruptedRecordError: payload is not a mapping or lacks id/type.
        """
        if not isinstance(data, dict):
            raise CorruptedRecordError(f"Event payload must be an object, got {type(data).__name__}")
        event_id = data.get("id")
        label = data.get("type")
        if not event_id or not isinstance(label, str) or not label:
            raise CorruptedRecordError(f"Event payload missing id/type: keys={sorted(data)}")

        raw_details = data.get("details") or {}
        raw_performer = data.get("performer") or {}
        if not isinstance(raw_details, dict) or not isinstance(raw_performer, dict):
            raise CorruptedRecordError(f"Event {event_id} has non-object details/performer")

        kind = EventType.parse(label)
        details_cls = DETAILS_BY_TYPE.get(kind, GenericDetails)
        timestamp = data.get("timestamp")
        return cls(
            id=str(event_id),
            type=kind.value if kind else label,
            timestamp=str(timestamp) if timestamp is not None else None,
            performer=Performer.from_dict(raw_performer),
            details=details_cls.from_dict(raw_details),
            location=Location.from_dict(data.get("location")),
        )


@dataclass(frozen=True)
class Batch:
    """A ledger key and its accumulated events, in append order.

    ``qr_code`` is the external identifier of the logical batch.  It equals
    ``key`` unless a writer stored the same batch under a second key.
    """
    key: str
    events: tuple = ()
    last_updated: str | None = None
    qr_code: str | None = None

    @property
    def external_id(self) -> str:
        return self.qr_code or self.key

    @property
    def status(self) -> BatchStatus:
        from herbtrace.services.status_deriver import derive_status
        return derive_status(self.events)

    def collection(self) -> Event | None:
        for ev in self.events:
            if ev.kind is EventType.COLLECTION:
                return ev
        return None

    def to_dict(self, include_events: bool = True) -> dict:
        out = {
            "qrCode": self.external_id,
            "key": self.key,
            "status": self.status.value,
            "lastUpdated": self.last_updated,
            "eventCount": len(self.events),
        }
        coll = self.collection()
        if coll is not None and isinstance(coll.details, CollectionDetails):
            out["product"] = {
                "botanicalName": coll.details.botanical_name,
                "commonName": coll.details.common_name,
            }
        if include_events:
            out["events"] = [e.to_dict() for e in self.events]
        return out
