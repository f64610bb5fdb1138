"""
Demo data: batches spread across every lifecycle stage.

Everything goes through submission_service so the seeded trails are
exactly what the portals would have produced.  Used by the
``flask seed-demo-batches`` command and by scripts/simulate_workflow.py
for its payloads.
"""

from __future__ import annotations

import logging

from herbtrace.ledger.facade import LedgerFacade, get_ledger
from herbtrace.models.traceability import BatchStatus, Role
from herbtrace.services import submission_service
from herbtrace.services.event_factory import collection_key

logger = logging.getLogger(__name__)

_HERBS = [
    ("Withania somnifera", "Ashwagandha", "root"),
    ("Curcuma longa", "Turmeric", "rhizome"),
    ("Ocimum tenuiflorum", "Tulsi", "leaf"),
    ("Bacopa monnieri", "Brahmi", "whole plant"),
    ("Azadirachta indica", "Neem", "leaf"),
]

# Target stage per seeded batch, cycled
_STAGE_CYCLE = [
    BatchStatus.COLLECTED,
    BatchStatus.PROCESSED,
    BatchStatus.TESTED,
    BatchStatus.APPROVED,
    BatchStatus.REJECTED,
]


def collection_payload(collection_id: str, n: int = 0) -> dict:
    botanical, common, part = _HERBS[n % len(_HERBS)]
    return {
        "collectionId": collection_id,
        "farmer": {
            "farmerId": f"FARMER-{n:03d}",
            "name": "Ravi Kumar",
            "phone": "+91-98450-00000",
            "certification": "Organic (NPOP)",
        },
        "herb": {
            "botanicalName": botanical,
            "commonName": common,
            "quantity": 20 + 5 * (n % 4),
            "unit": "kg",
            "collectionMethod": "Hand-picked",
            "partUsed": part,
        },
        "location": {"latitude": 12.9716, "longitude": 77.5946, "address": "Demo Farm, Karnataka"},
    }


def processing_payload(qr_code: str) -> dict:
    return {
        "qrCode": qr_code,
        "processor": {
            "facilityId": "PROC-001",
            "name": "Green Valley Processing",
            "certification": "GMP",
            "location": "Mysuru",
        },
        "processing": {
            "method": "Shade drying",
            "equipment": "Solar dryer",
            "temperature": 40,
            "duration": 72,
        },
        "quality": {"moisture": 8.5, "grade": "A"},
    }


def lab_payload(qr_code: str, test_id: str = "TEST-001") -> dict:
    return {
        "qrCode": qr_code,
        "testId": test_id,
        "lab": {"labId": "LAB-001", "name": "AyurTest Laboratories", "accreditation": "NABL"},
        "tests": {"purity": 98.2, "moisture": 7.9, "heavyMetals": "within limits"},
        "certificate": {"number": f"CERT-{test_id}", "validUntil": "2027-12-31"},
    }


def review_payload(qr_code: str, decision: str = "approved") -> dict:
    reason = (
        "All quality parameters within limits"
        if decision == "approved"
        else "Pesticide residue above acceptable limits"
    )
    return {
        "qrCode": qr_code,
        "decision": decision,
        "reason": reason,
        "reviewer": {"regulatorId": "REG-001", "name": "State Drug Authority"},
    }


def _advance(key: str, target: BatchStatus, ledger: LedgerFacade) -> None:
    steps = []
    if target is not BatchStatus.COLLECTED:
        steps.append((Role.PROCESSOR, processing_payload(key)))
    if target in (BatchStatus.TESTED, BatchStatus.APPROVED, BatchStatus.REJECTED):
        steps.append((Role.LAB, lab_payload(key, f"TEST-{key}")))
    if target.is_terminal:
        steps.append((Role.REGULATOR, review_payload(key, target.value)))

    for role, payload in steps:
        result = submission_service.submit(key, role, payload, ledger=ledger)
        if not result.accepted:
            raise RuntimeError(f"Demo step {role.value} on {key} rejected: {result.decision.reason}")


def seed_demo_batches(count: int = 5, *, ledger: LedgerFacade | None = None,
                      prefix: str = "DEMO") -> list[str]:
    """Create ``count`` batches, cycling through the lifecycle stages.

    Keys that already exist are skipped, so re-running is harmless.
    Returns the keys created.
    """
    ledger = ledger or get_ledger()
    created = []
    for n in range(count):
        collection_id = f"{prefix}-{n + 1:03d}"
        payload = collection_payload(collection_id, n)
        key = collection_key(payload)
        if ledger.exists(key):
            logger.info("Demo batch %s already present, skipping", key, extra={"batch_key": key})
            continue
        submission_service.create_batch(payload, Role.FARMER, ledger=ledger)
        _advance(key, _STAGE_CYCLE[n % len(_STAGE_CYCLE)], ledger)
        created.append(key)

    logger.info("Seeded %d demo batches (mode=%s)", len(created), ledger.mode)
    return created
