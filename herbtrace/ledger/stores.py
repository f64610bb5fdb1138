"""
Ledger stores  interchangeable backends behind ``LedgerFacade``.

Every store implements the same four calls with the same semantics:

    append(key, event, expected_version=None, qr_code=None) -> StoredAppend
    get(key)                                                -> Batch  (NotFoundError)
    scan_all()                                              -> list[Batch]
    connect()                                               -> None   (StorageUnavailable)

  - append creates the key on first write; events are never removed or
    rewritten.
  - ``expected_version`` is the number of events the caller saw.  A
    mismatch raises ConcurrentWriteError and nothing is written.
  - A backend that cannot serve the call raises StorageUnavailable.
    A full in-memory store raises its subclass StorageExhausted.
    A stored payload that no longer decodes raises CorruptedRecordError.
  - Returned batches are fresh objects; mutating them cannot reach the
    store.

Stores:
    MemoryLedgerStore      mode "memory"         dict + one coarse lock
    CAConnectedLedgerStore mode "ca-connected"   CA verified, writes kept in memory
    SQLLedgerStore         mode "database"       Flask-SQLAlchemy tables
    NetworkLedgerStore     mode "network"        LedgerGateway REST calls

Only NetworkLedgerStore returns genuine transaction ids.
"""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError

from herbtrace.core.exceptions import (
    ConcurrentWriteError,
    CorruptedRecordError,
    NotFoundError,
    StorageExhausted,
    StorageUnavailable,
)
from herbtrace.models import db
from herbtrace.models.ledger import BatchEventRecord, BatchRecord
from herbtrace.models.traceability import Batch, Event
from herbtrace.services.status_deriver import derive_status

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StoredAppend:
    """What a store reports back for one accepted append."""
    sequence: int            # 1-based position of the event in its batch
    version: int             # event count after the append
    last_updated: str
    transaction_id: str | None = None


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _last_updated_for(event: Event) -> str:
    return event.timestamp or _now_iso()


def _check_version(key: str, expected: int | None, actual: int) -> None:
    if expected is not None and expected != actual:
        raise ConcurrentWriteError(key, expected, actual)


def batch_from_dict(data) -> Batch:
    """Decode a serialised batch ({key, qrCode, lastUpdated, events})."""
    if not isinstance(data, dict) or not data.get("key"):
        raise CorruptedRecordError("Batch payload must be an object with a key")
    raw_events = data.get("events") or []
    if not isinstance(raw_events, list):
        raise CorruptedRecordError(f"Batch {data['key']} events must be a list")
    return Batch(
        key=str(data["key"]),
        events=tuple(Event.from_dict(e) for e in raw_events),
        last_updated=data.get("lastUpdated"),
        qr_code=data.get("qrCode"),
    )


class LedgerStore:
    """Abstract store.  Subclasses set ``mode`` and implement the four calls."""

    mode = "abstract"
    supports_transaction_ids = False

    def connect(self) -> None:
        """Verify the backend is reachable.  Default: nothing to check."""

    def append(self, key: str, event: Event, expected_version: int | None = None,
               qr_code: str | None = None) -> StoredAppend:
        raise NotImplementedError

    def get(self, key: str) -> Batch:
        raise NotImplementedError

    def scan_all(self) -> list[Batch]:
        raise NotImplementedError

    def describe(self) -> dict:
        return {"mode": self.mode}


# ═════════════════════════════════════════════════════════════════════════════
# In-memory
# ═════════════════════════════════════════════════════════════════════════════

class _MemoryRecord:
    __slots__ = ("events", "last_updated", "qr_code")

    def __init__(self, qr_code: str | None):
        self.events: list[dict] = []
        self.last_updated: str | None = None
        self.qr_code = qr_code


class MemoryLedgerStore(LedgerStore):
    """Process-local store.  Also the facade's fallback.

    Events are kept serialised (``Event.to_dict()``) and decoded on every
    read, so no caller ever holds a reference into the table.

    Optional resource limits make the store refuse writes past a size;
    that refusal is a StorageExhausted, which the facade never degrades on.
    """

    mode = "memory"

    def __init__(self, max_batches: int | None = None, max_events_per_batch: int | None = None):
        self.max_batches = max_batches
        self.max_events_per_batch = max_events_per_batch
        self._lock = threading.RLock()
        self._records: dict[str, _MemoryRecord] = {}

    def append(self, key, event, expected_version=None, qr_code=None) -> StoredAppend:
        payload = event.to_dict()
        with self._lock:
            record = self._records.get(key)
            current = len(record.events) if record else 0
            _check_version(key, expected_version, current)

            if record is None:
                if self.max_batches is not None and len(self._records) >= self.max_batches:
                    raise StorageExhausted(
                        f"{self.mode} store full ({self.max_batches} batches)", backend=self.mode
                    )
                record = _MemoryRecord(qr_code)
                self._records[key] = record
            elif self.max_events_per_batch is not None and current >= self.max_events_per_batch:
                raise StorageExhausted(
                    f"{self.mode} store: batch {key} reached {self.max_events_per_batch} events",
                    backend=self.mode,
                )

            record.events.append(payload)
            record.last_updated = _last_updated_for(event)
            return StoredAppend(
                sequence=len(record.events),
                version=len(record.events),
                last_updated=record.last_updated,
            )

    def _to_batch(self, key: str, record: _MemoryRecord) -> Batch:
        return Batch(
            key=key,
            events=tuple(Event.from_dict(e) for e in record.events),
            last_updated=record.last_updated,
            qr_code=record.qr_code,
        )

    def get(self, key) -> Batch:
        with self._lock:
            record = self._records.get(key)
            if record is None:
                raise NotFoundError("Batch", key)
            return self._to_batch(key, record)

    def scan_all(self) -> list[Batch]:
        with self._lock:
            return [self._to_batch(k, r) for k, r in self._records.items()]

    def describe(self) -> dict:
        with self._lock:
            size = len(self._records)
        return {
            "mode": self.mode,
            "batches": size,
            "maxBatches": self.max_batches,
            "maxEventsPerBatch": self.max_events_per_batch,
        }


# ═════════════════════════════════════════════════════════════════════════════
# CA-connected
# ═════════════════════════════════════════════════════════════════════════════

class CAConnectedLedgerStore(MemoryLedgerStore):
    """Credentials verified against the CA; the ledger itself is not reached.

    Behaves exactly like the memory store once connected.  It does not
    invent transaction ids: nothing was written to a ledger.
    """

    mode = "ca-connected"

    def __init__(self, gateway, **limits):
        super().__init__(**limits)
        self.gateway = gateway
        self.ca_info: dict | None = None

    def connect(self) -> None:
        result = self.gateway.probe()
        if not result.ok:
            raise StorageUnavailable(f"Certificate authority unreachable: {result.error}", backend=self.mode)
        self.ca_info = result.data
        logger.info("CA verified ca=%s version=%s", result.data.get("caName"), result.data.get("version"))

    def describe(self) -> dict:
        out = super().describe()
        out["certificateAuthority"] = {"url": self.gateway.base_url, **(self.ca_info or {})}
        return out


# ═════════════════════════════════════════════════════════════════════════════
# Database
# ═════════════════════════════════════════════════════════════════════════════

_DB_UNAVAILABLE = (OperationalError, InterfaceError)


class SQLLedgerStore(LedgerStore):
    """Flask-SQLAlchemy backed store.  Must run inside an app context."""

    mode = "database"

    def connect(self) -> None:
        try:
            db.session.execute(db.text("SELECT 1"))
        except _DB_UNAVAILABLE as exc:
            db.session.rollback()
            raise StorageUnavailable(f"Database unreachable: {exc}", backend=self.mode) from exc

    @staticmethod
    def _decode_event(row: BatchEventRecord) -> Event:
        try:
            payload = json.loads(row.payload)
        except (TypeError, ValueError) as exc:
            raise CorruptedRecordError(
                f"Event {row.batch_key}#{row.sequence} payload is not JSON"
            ) from exc
        return Event.from_dict(payload)

    def _to_batch(self, rec: BatchRecord) -> Batch:
        return Batch(
            key=rec.key,
            events=tuple(self._decode_event(row) for row in rec.events),
            last_updated=rec.last_updated,
            qr_code=rec.qr_code,
        )

    def append(self, key, event, expected_version=None, qr_code=None) -> StoredAppend:
        try:
            rec = db.session.get(BatchRecord, key)
            current = rec.version if rec else 0
            _check_version(key, expected_version, current)

            existing = [self._decode_event(row) for row in rec.events] if rec else []
            if rec is None:
                rec = BatchRecord(key=key, qr_code=qr_code, version=0)
                db.session.add(rec)

            sequence = current + 1
            db.session.add(BatchEventRecord(
                batch_key=key,
                sequence=sequence,
                event_id=event.id,
                event_type=event.type,
                payload=json.dumps(event.to_dict(), ensure_ascii=False),
            ))
            rec.version = sequence
            rec.last_updated = _last_updated_for(event)
            rec.status_cache = derive_status(existing + [event]).value
            db.session.commit()
            return StoredAppend(sequence=sequence, version=sequence, last_updated=rec.last_updated)
        except IntegrityError as exc:
            db.session.rollback()
            # Another writer took this sequence number first.
            raise ConcurrentWriteError(key, expected_version if expected_version is not None else -1, -1) from exc
        except _DB_UNAVAILABLE as exc:
            db.session.rollback()
            raise StorageUnavailable(f"Database write failed: {exc}", backend=self.mode) from exc
        except Exception:
            db.session.rollback()
            raise

    def get(self, key) -> Batch:
        try:
            rec = db.session.get(BatchRecord, key)
        except _DB_UNAVAILABLE as exc:
            db.session.rollback()
            raise StorageUnavailable(f"Database read failed: {exc}", backend=self.mode) from exc
        if rec is None:
            raise NotFoundError("Batch", key)
        return self._to_batch(rec)

    def scan_all(self) -> list[Batch]:
        try:
            rows = db.session.execute(
                db.select(BatchRecord).order_by(BatchRecord.created_at, BatchRecord.key)
            ).scalars().all()
        except _DB_UNAVAILABLE as exc:
            db.session.rollback()
            raise StorageUnavailable(f"Database scan failed: {exc}", backend=self.mode) from exc
        return [self._to_batch(r) for r in rows]

    def describe(self) -> dict:
        return {"mode": self.mode, "engine": db.engine.url.get_backend_name()}


# ═════════════════════════════════════════════════════════════════════════════
# Ledger network
# ═════════════════════════════════════════════════════════════════════════════

class NetworkLedgerStore(LedgerStore):
    """Full ledger mode: every call goes through ``LedgerGateway``."""

    mode = "network"
    supports_transaction_ids = True

    def __init__(self, gateway):
        self.gateway = gateway

    def _unavailable(self, what: str, result) -> StorageUnavailable:
        return StorageUnavailable(f"Ledger {what} failed: {result.error}", backend=self.mode)

    def connect(self) -> None:
        result = self.gateway.ping()
        if not result.ok:
            raise self._unavailable("health check", result)

    def append(self, key, event, expected_version=None, qr_code=None) -> StoredAppend:
        payload = event.to_dict()
        if qr_code:
            payload = {**payload, "qrCode": qr_code}
        result = self.gateway.append_event(key, payload, expected_version)
        if result.status_code == 409:
            raise ConcurrentWriteError(key, expected_version if expected_version is not None else -1, -1)
        if not result.ok:
            raise self._unavailable("append", result)

        data = result.data if isinstance(result.data, dict) else {}
        try:
            sequence = int(data["sequence"])
        except (KeyError, TypeError, ValueError) as exc:
            raise CorruptedRecordError(f"Ledger append response for {key} lacks a sequence") from exc
        return StoredAppend(
            sequence=sequence,
            version=int(data.get("version") or sequence),
            last_updated=data.get("lastUpdated") or _last_updated_for(event),
            transaction_id=data.get("transactionId"),
        )

    def get(self, key) -> Batch:
        result = self.gateway.get_batch(key)
        if result.status_code == 404:
            raise NotFoundError("Batch", key)
        if not result.ok:
            raise self._unavailable("read", result)
        return batch_from_dict(result.data)

    def scan_all(self) -> list[Batch]:
        result = self.gateway.list_batches()
        if not result.ok:
            raise self._unavailable("scan", result)
        data = result.data if isinstance(result.data, dict) else {}
        return [batch_from_dict(b) for b in data.get("batches") or []]

    def describe(self) -> dict:
        return {"mode": self.mode, "gateway": self.gateway.base_url}
