"""
Event factory: portal payload → typed Event.

Each acting portal posts its own payload shape; this module checks the
structure and builds the matching Event variant.  It knows nothing about
workflow rules: a well-formed lab payload for a batch that is not ready
for testing still builds fine, and the transition validator rejects it
later.

Payload shapes (camelCase, as the portals send them):

    farmer     {collectionId, farmer{farmerId,name,phone,certification},
                herb{botanicalName,commonName,quantity,unit,...},
                location{latitude,longitude,address}, timestamp?}
    processor  {qrCode, processor{facilityId,name,certification,location},
                processing{method,equipment,temperature,duration,notes},
                quality{...}?, timestamp?}
    lab        {qrCode, testId, lab{labId,name,accreditation,location},
                tests{...}, certificate{...}?, timestamp?}
    regulator  {qrCode, decision, reason?, reviewId?,
                reviewer{regulatorId,name,certification,location}, timestamp?}

Raises ValidationError (→ 400) with a per-field ``details`` map.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from herbtrace.core.exceptions import ValidationError
from herbtrace.models.traceability import (
    CollectionDetails,
    Event,
    EventType,
    LabTestingDetails,
    Location,
    Performer,
    ProcessingDetails,
    RegulatoryReviewDetails,
    ReviewDecision,
    Role,
)
from herbtrace.services.status_deriver import parse_timestamp

COLLECTION_KEY_PREFIX = "QR_"


def _obj(payload: dict, name: str, *, required: bool = True) -> dict:
    value = payload.get(name)
    if value is None:
        if required:
            raise ValidationError(f"'{name}' is required", details={name: "required"})
        return {}
    if not isinstance(value, dict):
        raise ValidationError(f"'{name}' must be an object", details={name: "must be an object"})
    return value


def _text(data: dict, name: str, *, required: bool = False, path: str | None = None) -> str | None:
    label = path or name
    value = data.get(name)
    if value is None or (isinstance(value, str) and not value.strip()):
        if required:
            raise ValidationError(f"'{label}' is required", details={label: "required"})
        return None
    if not isinstance(value, (str, int)) or isinstance(value, bool):
        raise ValidationError(f"'{label}' must be a string", details={label: "must be a string"})
    return str(value).strip()


def _number(data: dict, name: str, *, path: str | None = None) -> float | None:
    label = path or name
    value = data.get(name)
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValidationError(f"'{label}' must be a number", details={label: "must be a number"})
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"'{label}' must be a number", details={label: "must be a number"}) from None


def _timestamp(payload: dict) -> str:
    value = payload.get("timestamp")
    if value in (None, ""):
        return datetime.now(timezone.utc).isoformat()
    if parse_timestamp(value) == float("-inf"):
        raise ValidationError(
            "'timestamp' must be an ISO-8601 date-time",
            details={"timestamp": "invalid date-time"},
        )
    return value


def _location(data: dict | None, fallback_address: str | None = None) -> Location | None:
    if not data and not fallback_address:
        return None
    data = data or {}
    return Location(
        address=_text(data, "address", path="location.address") or fallback_address,
        latitude=_number(data, "latitude", path="location.latitude"),
        longitude=_number(data, "longitude", path="location.longitude"),
    )


def _new_event_id(prefix: str) -> str:
    return f"EVT-{prefix}-{uuid.uuid4().hex[:12]}"


def batch_key(payload: dict) -> str:
    """Ledger key a submission targets (``qrCode``, or legacy ``originalQrCode``)."""
    key = payload.get("qrCode") or payload.get("originalQrCode")
    if not isinstance(key, str) or not key.strip():
        raise ValidationError("'qrCode' is required", details={"qrCode": "required"})
    return key.strip()


def collection_key(payload: dict) -> str:
    collection_id = _text(payload, "collectionId", required=True)
    return f"{COLLECTION_KEY_PREFIX}{collection_id}"


# ═════════════════════════════════════════════════════════════════════════════
# Per-role builders
# ═════════════════════════════════════════════════════════════════════════════

def build_collection_event(payload: dict) -> Event:
    farmer = _obj(payload, "farmer")
    herb = _obj(payload, "herb")
    collection_id = _text(payload, "collectionId", required=True)
    return Event(
        id=_new_event_id("COL"),
        type=EventType.COLLECTION.value,
        timestamp=_timestamp(payload),
        performer=Performer(
            id=_text(farmer, "farmerId", path="farmer.farmerId") or f"FARMER-{collection_id}",
            name=_text(farmer, "name", required=True, path="farmer.name"),
            role=Role.FARMER.value,
            certification=_text(farmer, "certification", path="farmer.certification"),
            contact=_text(farmer, "phone", path="farmer.phone"),
        ),
        location=_location(_obj(payload, "location", required=False)),
        details=CollectionDetails(
            botanical_name=_text(herb, "botanicalName", required=True, path="herb.botanicalName"),
            common_name=_text(herb, "commonName", path="herb.commonName"),
            quantity=_number(herb, "quantity", path="herb.quantity"),
            unit=_text(herb, "unit", path="herb.unit") or "kg",
            collection_method=_text(herb, "collectionMethod", path="herb.collectionMethod"),
            part_used=_text(herb, "partUsed", path="herb.partUsed"),
            notes=_text(herb, "notes", path="herb.notes"),
        ),
    )


def build_processing_event(payload: dict) -> Event:
    processor = _obj(payload, "processor")
    processing = _obj(payload, "processing")
    quality = _obj(payload, "quality", required=False)
    return Event(
        id=_new_event_id("PROC"),
        type=EventType.PROCESSING.value,
        timestamp=_timestamp(payload),
        performer=Performer(
            id=_text(processor, "facilityId", path="processor.facilityId") or "PROC-unknown",
            name=_text(processor, "name", required=True, path="processor.name"),
            role=Role.PROCESSOR.value,
            certification=_text(processor, "certification", path="processor.certification"),
            contact=_text(processor, "contact", path="processor.contact"),
        ),
        location=_location(None, _text(processor, "location", path="processor.location")),
        details=ProcessingDetails(
            method=_text(processing, "method", required=True, path="processing.method"),
            equipment=_text(processing, "equipment", path="processing.equipment"),
            temperature=_number(processing, "temperature", path="processing.temperature"),
            duration_hours=_number(processing, "duration", path="processing.duration"),
            notes=_text(processing, "notes", path="processing.notes"),
            quality=dict(quality),
        ),
    )


def build_lab_event(payload: dict) -> Event:
    lab = _obj(payload, "lab")
    tests = _obj(payload, "tests")
    if not tests:
        raise ValidationError("'tests' must contain at least one result", details={"tests": "empty"})
    certificate = _obj(payload, "certificate", required=False)
    return Event(
        id=_new_event_id("LAB"),
        type=EventType.LAB_TESTING.value,
        timestamp=_timestamp(payload),
        performer=Performer(
            id=_text(lab, "labId", path="lab.labId") or "LAB-unknown",
            name=_text(lab, "name", required=True, path="lab.name"),
            role=Role.LAB.value,
            certification=_text(lab, "accreditation", path="lab.accreditation"),
            contact=_text(lab, "contact", path="lab.contact"),
        ),
        location=_location(None, _text(lab, "location", path="lab.location")),
        details=LabTestingDetails(
            test_id=_text(payload, "testId", required=True),
            results=dict(tests),
            certificate=dict(certificate),
            notes=_text(payload, "notes"),
        ),
    )


def build_review_event(payload: dict) -> Event:
    reviewer = _obj(payload, "reviewer")
    decision = ReviewDecision.parse(payload.get("decision"))
    if decision is None:
        raise ValidationError(
            "'decision' must be 'approved' or 'rejected'",
            details={"decision": "must be one of: approved, rejected"},
        )
    return Event(
        id=_new_event_id("REG"),
        type=EventType.REGULATORY_REVIEW.value,
        timestamp=_timestamp(payload),
        performer=Performer(
            id=_text(reviewer, "regulatorId", path="reviewer.regulatorId") or "REG-unknown",
            name=_text(reviewer, "name", required=True, path="reviewer.name"),
            role=Role.REGULATOR.value,
            certification=_text(reviewer, "certification", path="reviewer.certification"),
            contact=_text(reviewer, "contact", path="reviewer.contact"),
        ),
        location=_location(None, _text(reviewer, "location", path="reviewer.location")),
        details=RegulatoryReviewDetails(
            decision=decision,
            reason=_text(payload, "reason"),
            review_id=_text(payload, "reviewId") or _text(payload, "reviewerId"),
        ),
    )


_BUILDERS = {
    Role.FARMER: build_collection_event,
    Role.PROCESSOR: build_processing_event,
    Role.LAB: build_lab_event,
    Role.REGULATOR: build_review_event,
}


def build_event(role, payload) -> Event:
    """Build the event ``role`` submits.  Roles without an event type are rejected."""
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object")
    parsed = Role.parse(role)
    builder = _BUILDERS.get(parsed)
    if builder is None:
        raise ValidationError(
            f"Role '{role}' does not submit events",
            details={"role": f"must be one of: {', '.join(r.value for r in _BUILDERS)}"},
        )
    return builder(payload)
