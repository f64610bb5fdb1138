"""
Event Ledger Facade.

One object per application, built by ``init_ledger(app)`` and stored in
``app.extensions``; request code reaches it through ``get_ledger()``.

Responsibilities on top of the active store:

  - Fallback: when the primary store raises StorageUnavailable the
    facade switches to a fresh in-memory store, logs the switch, and
    retries the call there.  It stays degraded until ``reconnect()``.
    A versioned append is not retried, since the fallback cannot hold
    the version the caller read.  If the fallback store raises too the
    error propagates to the caller.
  - Exhaustion: StorageExhausted means a healthy store is full.  It
    never triggers the fallback and always propagates.
  - Per-key locks: ``lock(key)`` serialises read → validate → append for
    one batch.  Different keys never block each other.
  - Write counter: monotonic count of accepted appends, diagnostics only.
  - Status: ``status()`` reports which mode is really serving calls and
    whether transaction ids are genuine.

Usage:
    ledger = get_ledger()
    with ledger.lock(key):
        batch = ledger.get(key)
        ...
        receipt = ledger.append(key, event, expected_version=len(batch.events))
"""

from __future__ import annotations

import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Callable

from flask import current_app

from herbtrace.core.exceptions import NotFoundError, StorageExhausted, StorageUnavailable
from herbtrace.ledger.stores import LedgerStore, MemoryLedgerStore
from herbtrace.models.traceability import Batch, Event

logger = logging.getLogger(__name__)

EXTENSION_KEY = "herbtrace_ledger"


@dataclass(frozen=True)
class AppendReceipt:
    batch_key: str
    event_id: str
    sequence: int
    version: int
    mode: str
    last_updated: str
    write_number: int
    transaction_id: str | None = None

    def to_dict(self) -> dict:
        return {
            "batchKey": self.batch_key,
            "eventId": self.event_id,
            "sequence": self.sequence,
            "version": self.version,
            "mode": self.mode,
            "lastUpdated": self.last_updated,
            "writeNumber": self.write_number,
            "transactionId": self.transaction_id,
        }


@dataclass(frozen=True)
class LedgerStatus:
    mode: str
    primary_mode: str
    degraded: bool
    connected: bool
    batch_count: int | None
    transaction_count: int
    supports_transaction_ids: bool
    last_error: str | None = None
    details: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "mode": self.mode,
            "primaryMode": self.primary_mode,
            "degraded": self.degraded,
            "connected": self.connected,
            "batchCount": self.batch_count,
            "transactionCount": self.transaction_count,
            "supportsTransactionIds": self.supports_transaction_ids,
            "lastError": self.last_error,
            "details": self.details,
        }


class LedgerFacade:
    """Uniform append/get/scan over whichever store is active."""

    def __init__(
        self,
        primary: LedgerStore,
        fallback_factory: Callable[[], LedgerStore] = MemoryLedgerStore,
        *,
        start_degraded: bool = False,
        last_error: str | None = None,
    ) -> None:
        self._primary = primary
        self._fallback_factory = fallback_factory
        self._state_lock = threading.Lock()
        self._active: LedgerStore = primary
        self._degraded = False
        self._last_error = last_error
        self._write_count = 0
        self._key_locks: dict[str, threading.RLock] = {}
        self._key_locks_guard = threading.Lock()
        if start_degraded:
            self._degrade(primary, last_error or "primary store unavailable at startup")

    # ── State ────────────────────────────────────────────────────────────────

    @property
    def active_store(self) -> LedgerStore:
        return self._active

    @property
    def mode(self) -> str:
        return self._active.mode

    @property
    def degraded(self) -> bool:
        return self._degraded

    def _degrade(self, failed: LedgerStore, error) -> None:
        with self._state_lock:
            if self._active is not failed:
                # Another thread already switched.
                return
            self._last_error = str(error)
            self._active = self._fallback_factory()
            self._degraded = True
        logger.warning(
            "Ledger store '%s' unavailable, falling back to '%s': %s",
            failed.mode, self._active.mode, error,
            extra={"ledger_mode": self._active.mode},
        )

    def reconnect(self) -> bool:
        """Try the primary store again.  Returns True when it is active."""
        try:
            self._primary.connect()
        except StorageUnavailable as exc:
            with self._state_lock:
                self._last_error = str(exc)
            logger.info("Ledger reconnect to '%s' failed: %s", self._primary.mode, exc)
            return False
        with self._state_lock:
            self._active = self._primary
            self._degraded = False
        logger.info("Ledger reconnected to '%s'", self._primary.mode,
                    extra={"ledger_mode": self._primary.mode})
        return True

    def _call(self, fn, *, retry_on_fallback: bool = True):
        store = self._active
        try:
            return store, fn(store)
        except StorageExhausted as exc:
            # The store is up and still holds its batches; only this write fails.
            logger.error("Ledger store '%s' exhausted: %s", store.mode, exc,
                         extra={"ledger_mode": store.mode})
            raise
        except StorageUnavailable as exc:
            if store is not self._primary:
                logger.error("Fallback ledger store '%s' failed: %s", store.mode, exc,
                             extra={"ledger_mode": store.mode})
                raise
            self._degrade(store, exc)
            if not retry_on_fallback:
                raise
        store = self._active
        return store, fn(store)

    # ── Per-key locking ──────────────────────────────────────────────────────

    def _lock_for(self, key: str) -> threading.RLock:
        with self._key_locks_guard:
            lock = self._key_locks.get(key)
            if lock is None:
                lock = threading.RLock()
                self._key_locks[key] = lock
            return lock

    @contextmanager
    def lock(self, key: str):
        """Hold the batch's lock for a read → validate → append sequence."""
        lock = self._lock_for(key)
        with lock:
            yield

    # ── Operations ───────────────────────────────────────────────────────────

    def append(self, key: str, event: Event, expected_version: int | None = None,
               qr_code: str | None = None) -> AppendReceipt:
        """Append ``event`` to ``key``.

        An append pinned to a non-zero ``expected_version`` is not retried on
        the fallback: the caller's read came from the failed store, and the
        fresh fallback cannot hold that version.  StorageUnavailable is
        raised instead, after the facade has degraded.
        """
        store, stored = self._call(
            lambda s: s.append(key, event, expected_version, qr_code),
            retry_on_fallback=not expected_version,
        )
        with self._state_lock:
            self._write_count += 1
            write_number = self._write_count
        return AppendReceipt(
            batch_key=key,
            event_id=event.id,
            sequence=stored.sequence,
            version=stored.version,
            mode=store.mode,
            last_updated=stored.last_updated,
            write_number=write_number,
            transaction_id=stored.transaction_id if store.supports_transaction_ids else None,
        )

    def get(self, key: str) -> Batch:
        return self._call(lambda s: s.get(key))[1]

    def exists(self, key: str) -> bool:
        try:
            self.get(key)
        except NotFoundError:
            return False
        return True

    def scan_all(self) -> list[Batch]:
        return self._call(lambda s: s.scan_all())[1]

    def status(self) -> LedgerStatus:
        store = self._active
        batch_count = None
        connected = True
        last_error = self._last_error
        try:
            batch_count = len(store.scan_all())
        except StorageUnavailable as exc:
            connected = False
            last_error = str(exc)
        return LedgerStatus(
            mode=store.mode,
            primary_mode=self._primary.mode,
            degraded=self._degraded,
            connected=connected,
            batch_count=batch_count,
            transaction_count=self._write_count,
            supports_transaction_ids=store.supports_transaction_ids,
            last_error=last_error,
            details=store.describe(),
        )


# ═════════════════════════════════════════════════════════════════════════════
# App wiring
# ═════════════════════════════════════════════════════════════════════════════

def _fallback_factory(app) -> Callable[[], LedgerStore]:
    max_batches = app.config.get("LEDGER_MAX_BATCHES")
    max_events = app.config.get("LEDGER_MAX_EVENTS_PER_BATCH")
    return lambda: MemoryLedgerStore(max_batches=max_batches, max_events_per_batch=max_events)


def _make_store(name: str, app) -> LedgerStore:
    from herbtrace.integrations.ca_gateway import CAGateway
    from herbtrace.integrations.ledger_gateway import LedgerGateway
    from herbtrace.ledger.stores import CAConnectedLedgerStore, NetworkLedgerStore, SQLLedgerStore

    cfg = app.config
    timeout = cfg.get("LEDGER_TIMEOUT_SECONDS", 5)
    limits = {
        "max_batches": cfg.get("LEDGER_MAX_BATCHES"),
        "max_events_per_batch": cfg.get("LEDGER_MAX_EVENTS_PER_BATCH"),
    }
    if name == "memory":
        return MemoryLedgerStore(**limits)
    if name == "database":
        return SQLLedgerStore()
    if name == "ca":
        gw = CAGateway(cfg.get("CA_URL") or "", timeout=timeout, verify=cfg.get("CA_VERIFY_TLS", True))
        return CAConnectedLedgerStore(gw, **limits)
    if name == "network":
        headers = {}
        if cfg.get("LEDGER_GATEWAY_TOKEN"):
            headers["Authorization"] = f"Bearer {cfg['LEDGER_GATEWAY_TOKEN']}"
        return NetworkLedgerStore(LedgerGateway(cfg.get("LEDGER_GATEWAY_URL") or "", timeout=timeout, headers=headers))
    raise ValueError(f"Unknown LEDGER_BACKEND '{name}'")


def _candidates(app) -> list[str]:
    backend = (app.config.get("LEDGER_BACKEND") or "memory").lower()
    if backend != "auto":
        return [backend]
    names = []
    if app.config.get("LEDGER_GATEWAY_URL"):
        names.append("network")
    if app.config.get("CA_URL"):
        names.append("ca")
    names.append("memory")
    return names


def connect_ledger(app) -> LedgerFacade:
    """Build the facade, walking the backend cascade.

    Each candidate is tried LEDGER_CONNECT_RETRIES times.  When every
    candidate fails the facade starts degraded on the in-memory fallback,
    reporting the last candidate as its primary.
    """
    retries = max(1, int(app.config.get("LEDGER_CONNECT_RETRIES", 3)))
    delay = float(app.config.get("LEDGER_CONNECT_RETRY_DELAY", 2))
    fallback = _fallback_factory(app)

    store = None
    last_error = None
    for name in _candidates(app):
        store = _make_store(name, app)
        for attempt in range(1, retries + 1):
            try:
                with app.app_context():
                    store.connect()
            except StorageUnavailable as exc:
                last_error = str(exc)
                logger.warning("Ledger backend '%s' connect attempt %d/%d failed: %s",
                               name, attempt, retries, exc)
                if attempt < retries and delay:
                    time.sleep(delay)
                continue
            logger.info("Ledger backend '%s' connected", store.mode, extra={"ledger_mode": store.mode})
            return LedgerFacade(store, fallback)

    return LedgerFacade(store, fallback, start_degraded=True, last_error=last_error)


def init_ledger(app) -> LedgerFacade:
    facade = connect_ledger(app)
    app.extensions[EXTENSION_KEY] = facade
    return facade


def get_ledger() -> LedgerFacade:
    return current_app.extensions[EXTENSION_KEY]
