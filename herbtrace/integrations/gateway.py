"""
Shared HTTP gateway plumbing for outbound ledger/CA calls.

Every outbound call made by a ledger store goes through a subclass of
``HTTPGateway``.  Direct `requests` calls in stores, services or
blueprints are FORBIDDEN.

  - Retry: max 2 extra attempts, backoff 1 s → 4 s (overridable)
  - Timeout: bounded per call (LEDGER_TIMEOUT_SECONDS)
  - Circuit breaker: ≥5 failures in 60 s → 30 s pause
  - 4xx responses other than 408/429 are final (no retry)
  - request() never raises; callers check GatewayResult.ok

Threading: breaker state is guarded by a lock because the facade may be
called from several request threads at once.

Testability: pass a mock `session` to the constructor instead of letting
the gateway create a real requests.Session, and ``backoff=(0, 0)`` to
skip the retry sleeps.
"""

from __future__ import annotations

import logging
import threading
import time
from datetime import datetime, timedelta, timezone
from typing import Any

import requests

logger = logging.getLogger(__name__)

# ── Circuit breaker constants ──────────────────────────────────────────────
_CB_FAILURE_THRESHOLD = 5          # failures within window before opening
_CB_WINDOW_SECONDS = 60            # failure counting window (seconds)
_CB_OPEN_DURATION_SECONDS = 30     # how long circuit stays open

# ── Retry constants ────────────────────────────────────────────────────────
_RETRY_MAX = 2
_RETRY_BACKOFF_SECONDS = (1, 4)    # sleep[0] after 1st fail, sleep[1] after 2nd

_DEFAULT_TIMEOUT = 5

# Client errors worth retrying
_RETRYABLE_4XX = frozenset({408, 429})


class GatewayResult:
    """Structured return value from gateway calls.

    Attributes:
        ok:             True if the call succeeded (HTTP 2xx + no exception).
        status_code:    HTTP status code (None if network-level failure).
        data:           Parsed JSON response body (dict or list), else None.
        error:          Human-readable error message or None.
        duration_ms:    Round-trip latency in milliseconds.
    """

    def __init__(
        self,
        ok: bool,
        status_code: int | None,
        data: dict | list | None,
        error: str | None,
        duration_ms: int,
    ) -> None:
        self.ok = ok
        self.status_code = status_code
        self.data = data
        self.error = error
        self.duration_ms = duration_ms

    def __repr__(self):
        return f"<GatewayResult ok={self.ok} status={self.status_code} error={self.error!r}>"


class HTTPGateway:
    """Base class: retries, timeout and circuit breaker around requests."""

    name = "gateway"

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = _DEFAULT_TIMEOUT,
        session: requests.Session | None = None,
        backoff: tuple = _RETRY_BACKOFF_SECONDS,
        verify: bool = True,
        headers: dict | None = None,
    ) -> None:
        self.base_url = (base_url or "").rstrip("/")
        self.timeout = timeout
        self.backoff = tuple(backoff)
        self.verify = verify
        self.headers = dict(headers or {})
        # Inject custom session for testing; create real one lazily otherwise.
        self._session: requests.Session | None = session
        self._cb_lock = threading.Lock()
        self._cb_failures: list[datetime] = []
        self._cb_open_until: datetime | None = None

    # ── HTTP session ─────────────────────────────────────────────────────────

    @property
    def session(self) -> requests.Session:
        """Return (or lazily create) the requests.Session."""
        if self._session is None:
            self._session = requests.Session()
        return self._session

    def url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    # ── Circuit breaker ───────────────────────────────────────────────────────

    def circuit_closed(self) -> bool:
        """Return True if the circuit allows calls; False if open (paused)."""
        now = datetime.now(timezone.utc)
        with self._cb_lock:
            if self._cb_open_until and now < self._cb_open_until:
                return False

            window_start = now - timedelta(seconds=_CB_WINDOW_SECONDS)
            self._cb_failures = [f for f in self._cb_failures if f >= window_start]

            if len(self._cb_failures) >= _CB_FAILURE_THRESHOLD:
                self._cb_open_until = now + timedelta(seconds=_CB_OPEN_DURATION_SECONDS)
                logger.error(
                    "Circuit opened for %s: %d failures in %ds window",
                    self.name, len(self._cb_failures), _CB_WINDOW_SECONDS,
                )
                return False
        return True

    def _record_failure(self) -> None:
        with self._cb_lock:
            self._cb_failures.append(datetime.now(timezone.utc))

    def _record_success(self) -> None:
        """On success, reset failure history and close the circuit."""
        with self._cb_lock:
            self._cb_failures.clear()
            self._cb_open_until = None

    # ── Core request dispatcher ───────────────────────────────────────────────

    def request(
        self,
        method: str,
        path: str,
        *,
        json_body: dict | list | None = None,
        params: dict | None = None,
        timeout: float | None = None,
        retries: int = _RETRY_MAX,
    ) -> GatewayResult:
        """Execute a request with retries.  Always returns, never raises."""
        if not self.circuit_closed():
            return GatewayResult(
                ok=False,
                status_code=None,
                data=None,
                error=f"Circuit breaker is open, {self.name} calls temporarily suspended",
                duration_ms=0,
            )

        timeout = self.timeout if timeout is None else timeout
        url = self.url(path)
        last_error = "Unknown error"
        last_status: int | None = None
        started = time.perf_counter()

        for attempt in range(retries + 1):
            try:
                kwargs: dict[str, Any] = {
                    "headers": {"Accept": "application/json", **self.headers},
                    "timeout": timeout,
                    "verify": self.verify,
                }
                if json_body is not None:
                    kwargs["json"] = json_body
                if params:
                    kwargs["params"] = params

                t0 = time.perf_counter()
                resp = self.session.request(method, url, **kwargs)
                duration_ms = int((time.perf_counter() - t0) * 1000)
                last_status = resp.status_code

                if resp.ok:
                    self._record_success()
                    try:
                        data = resp.json() if resp.content else {}
                    except ValueError:
                        data = {}
                    return GatewayResult(True, resp.status_code, data, None, duration_ms)

                last_error = f"HTTP {resp.status_code}: {resp.text[:500]}"
                if 400 <= resp.status_code < 500 and resp.status_code not in _RETRYABLE_4XX:
                    # Answer from a healthy peer: final, and not a breaker failure
                    return GatewayResult(False, resp.status_code, None, last_error, duration_ms)

                self._record_failure()
                logger.warning(
                    "%s request failed attempt=%d/%d status=%d url=%s",
                    self.name, attempt + 1, retries + 1, resp.status_code, url,
                )

            except requests.Timeout:
                last_error = f"Request timed out after {timeout}s"
                self._record_failure()
                logger.warning(
                    "%s request timed out attempt=%d/%d url=%s",
                    self.name, attempt + 1, retries + 1, url,
                )

            except requests.RequestException as exc:
                last_error = str(exc)[:500]
                self._record_failure()
                logger.warning(
                    "%s network error attempt=%d/%d url=%s error=%s",
                    self.name, attempt + 1, retries + 1, url, last_error,
                )

            if attempt < retries and self.backoff:
                sleep_s = self.backoff[min(attempt, len(self.backoff) - 1)]
                if sleep_s:
                    logger.info("Retrying %s request in %ss (attempt %d)", self.name, sleep_s, attempt + 2)
                    time.sleep(sleep_s)

        return GatewayResult(
            ok=False,
            status_code=last_status,
            data=None,
            error=last_error,
            duration_ms=int((time.perf_counter() - started) * 1000),
        )
