"""Tests for herbtrace.services.submission_service.

Coverage
--------
    - full lifecycle collection → approval through the service
    - each rejection kind, and that a rejection appends nothing
    - batch creation rules (key format, duplicates, create rights)
    - two threads racing on one batch: exactly one wins
    - a writer outside this process slipping in between read and append
    - storage failures: a full store and an append failing after the read
"""

import threading
import time

import pytest

from herbtrace.core.exceptions import (
    ConcurrentWriteError,
    ConflictError,
    NotFoundError,
    PermissionDenied,
    StorageExhausted,
    StorageUnavailable,
    ValidationError,
)
from herbtrace.ledger.facade import LedgerFacade
from herbtrace.ledger.stores import MemoryLedgerStore
from herbtrace.models.traceability import BatchStatus, Role
from herbtrace.services import submission_service
from herbtrace.services.demo_seed import (
    collection_payload,
    lab_payload,
    processing_payload,
    review_payload,
)
from herbtrace.services.event_factory import build_processing_event
from herbtrace.services.transition_validator import RejectionCode

KEY = "QR_COL-100"


@pytest.fixture()
def facade():
    return LedgerFacade(MemoryLedgerStore())


def _create(facade):
    return submission_service.create_batch(collection_payload("COL-100"), ledger=facade)


class TestLifecycle:
    def test_collection_to_approval(self, facade):
        created = _create(facade)
        assert created.batch_key == KEY
        assert created.batch.status is BatchStatus.COLLECTED
        assert created.receipt.write_number == 1

        steps = [
            (Role.PROCESSOR, processing_payload(KEY), BatchStatus.PROCESSED),
            (Role.LAB, lab_payload(KEY), BatchStatus.TESTED),
            (Role.REGULATOR, review_payload(KEY, "approved"), BatchStatus.APPROVED),
        ]
        for role, payload, expected in steps:
            result = submission_service.submit(KEY, role, payload, ledger=facade)
            assert result.accepted is True
            assert result.next_status is expected
            assert result.batch.status is expected
            assert facade.get(KEY).status is expected

        assert len(facade.get(KEY).events) == 4
        assert facade.status().transaction_count == 4

    def test_rejected_review(self, facade):
        _create(facade)
        submission_service.submit(KEY, "processor", processing_payload(KEY), ledger=facade)
        submission_service.submit(KEY, "lab", lab_payload(KEY), ledger=facade)
        result = submission_service.submit(KEY, "regulator", review_payload(KEY, "rejected"), ledger=facade)
        assert result.next_status is BatchStatus.REJECTED

    def test_accepted_to_dict(self, facade):
        _create(facade)
        body = submission_service.submit(KEY, "processor", processing_payload(KEY), ledger=facade).to_dict()
        assert body["accepted"] is True
        assert body["qrCode"] == KEY
        assert body["currentStatus"] == "processed"
        assert body["nextStatus"] == "processed"
        assert body["receipt"]["sequence"] == 2
        assert body["batch"]["eventCount"] == 2
        assert body["workflowStatus"]["allowedPortals"] == ["lab"]


class TestRejections:
    def test_second_processing_is_already_acted(self, facade):
        _create(facade)
        submission_service.submit(KEY, "processor", processing_payload(KEY), ledger=facade)
        result = submission_service.submit(KEY, "processor", processing_payload(KEY), ledger=facade)
        assert result.accepted is False
        assert result.decision.code is RejectionCode.ALREADY_ACTED
        assert len(facade.get(KEY).events) == 2

    def test_lab_before_processing_is_access_denied(self, facade):
        _create(facade)
        result = submission_service.submit(KEY, "lab", lab_payload(KEY), ledger=facade)
        assert result.decision.code is RejectionCode.ACCESS_DENIED
        body = result.to_dict()
        assert body["currentStatus"] == "collected"
        assert body["code"] == "access_denied"
        assert "nextStatus" not in body
        assert len(facade.get(KEY).events) == 1

    def test_review_after_approval_is_no_transition(self, facade):
        _create(facade)
        for role, payload in [
            ("processor", processing_payload(KEY)),
            ("lab", lab_payload(KEY)),
            ("regulator", review_payload(KEY)),
        ]:
            submission_service.submit(KEY, role, payload, ledger=facade)
        result = submission_service.submit(KEY, "regulator", review_payload(KEY, "rejected"), ledger=facade)
        assert result.decision.code is RejectionCode.NO_TRANSITION
        assert facade.get(KEY).status is BatchStatus.APPROVED

    def test_unknown_batch(self, facade):
        with pytest.raises(NotFoundError):
            submission_service.submit("QR_NOPE", "processor", processing_payload("QR_NOPE"), ledger=facade)

    def test_malformed_payload_on_allowed_submission(self, facade):
        _create(facade)
        with pytest.raises(ValidationError):
            submission_service.submit(KEY, "processor", {"qrCode": KEY}, ledger=facade)
        assert len(facade.get(KEY).events) == 1

    def test_unknown_batch_reported_before_payload_check(self, facade):
        with pytest.raises(NotFoundError):
            submission_service.submit("QR_NOPE", "processor", {"qrCode": "QR_NOPE"}, ledger=facade)

    @pytest.mark.parametrize("role", ["consumer", "management", "farmer"])
    def test_non_submitting_role_on_terminal_batch(self, facade, role):
        _create(facade)
        for step_role, payload in [
            ("processor", processing_payload(KEY)),
            ("lab", lab_payload(KEY)),
            ("regulator", review_payload(KEY)),
        ]:
            submission_service.submit(KEY, step_role, payload, ledger=facade)
        result = submission_service.submit(KEY, role, {}, ledger=facade)
        assert result.accepted is False
        assert result.decision.code is RejectionCode.NO_TRANSITION
        assert len(facade.get(KEY).events) == 4


class TestCreateBatch:
    def test_duplicate_key(self, facade):
        _create(facade)
        with pytest.raises(ConflictError):
            _create(facade)
        assert len(facade.get(KEY).events) == 1

    @pytest.mark.parametrize("role", ["processor", "lab", "regulator", "consumer", "management", "pirate"])
    def test_only_farmer_creates(self, facade, role):
        with pytest.raises(PermissionDenied):
            submission_service.create_batch(collection_payload("COL-100"), role, ledger=facade)


# ── Concurrency ──────────────────────────────────────────────────────────────


class _SlowStore(MemoryLedgerStore):
    """Widens the read → append window so racing threads would collide."""

    def get(self, key):
        batch = super().get(key)
        time.sleep(0.05)
        return batch


class _InterleavingStore(MemoryLedgerStore):
    """Another process appends right after this one reads."""

    def __init__(self):
        super().__init__()
        self.interleave = False

    def get(self, key):
        batch = super().get(key)
        if self.interleave:
            self.interleave = False
            super().append(key, build_processing_event(processing_payload(key)))
        return batch


class TestConcurrency:
    def test_racing_submissions_accept_exactly_one(self):
        facade = LedgerFacade(_SlowStore())
        _create(facade)
        results = []
        errors = []

        def worker():
            try:
                results.append(submission_service.submit(KEY, "processor", processing_payload(KEY), ledger=facade))
            except Exception as exc:  # surfaced by the assertion below
                errors.append(exc)

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert sum(r.accepted for r in results) == 1
        assert {r.decision.code for r in results if not r.accepted} == {RejectionCode.ALREADY_ACTED}
        assert len(facade.get(KEY).events) == 2

    def test_foreign_writer_between_read_and_append(self):
        store = _InterleavingStore()
        facade = LedgerFacade(store)
        _create(facade)
        store.interleave = True
        with pytest.raises(ConcurrentWriteError):
            submission_service.submit(KEY, "processor", processing_payload(KEY), ledger=facade)
        # only the foreign write landed
        assert len(facade.get(KEY).events) == 2


class _FailingAppendStore(MemoryLedgerStore):
    """Reads keep working; appends fail once ``fail_appends`` is set."""

    mode = "network"

    def __init__(self):
        super().__init__()
        self.fail_appends = False

    def append(self, key, event, expected_version=None, qr_code=None):
        if self.fail_appends:
            raise StorageUnavailable("gateway dropped the connection", backend=self.mode)
        return super().append(key, event, expected_version, qr_code)


class TestStorageFailure:
    def test_append_failure_after_read_is_unavailable_not_conflict(self):
        store = _FailingAppendStore()
        facade = LedgerFacade(store)
        _create(facade)
        store.fail_appends = True
        with pytest.raises(StorageUnavailable):
            submission_service.submit(KEY, "processor", processing_payload(KEY), ledger=facade)
        assert facade.degraded is True
        assert facade.mode == "memory"

    def test_full_store_keeps_existing_batches(self):
        facade = LedgerFacade(MemoryLedgerStore(max_batches=1))
        _create(facade)
        with pytest.raises(StorageExhausted):
            submission_service.create_batch(collection_payload("COL-101"), ledger=facade)
        assert facade.degraded is False
        result = submission_service.submit(KEY, "processor", processing_payload(KEY), ledger=facade)
        assert result.accepted is True
