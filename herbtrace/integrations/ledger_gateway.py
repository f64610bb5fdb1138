"""
Ledger network gateway: REST facade in front of the distributed ledger.

The ledger network itself (consensus, peers, chaincode) is opaque to this
service; it is reached through a small REST API:

    GET  /health                     → {"status": "ok", ...}
    GET  /batches                    → {"batches": [<batch>, ...]}
    GET  /batches/<key>              → <batch>            (404 if unknown)
    POST /batches/<key>/events       → {"transactionId", "sequence", "version", "lastUpdated"}
         body: {"event": <event>, "expectedVersion": int | null}
                                        (409 on version mismatch)

where <batch> is {"key", "qrCode", "version", "lastUpdated", "events": [...]}.

Every method returns a GatewayResult; interpretation (not found, conflict,
unavailable) belongs to ``NetworkLedgerStore``.
"""

from __future__ import annotations

from urllib.parse import quote

from herbtrace.integrations.gateway import GatewayResult, HTTPGateway


class LedgerGateway(HTTPGateway):
    name = "ledger"

    def ping(self) -> GatewayResult:
        return self.request("GET", "/health", retries=0)

    def list_batches(self) -> GatewayResult:
        return self.request("GET", "/batches")

    def get_batch(self, key: str) -> GatewayResult:
        return self.request("GET", f"/batches/{quote(key, safe='')}")

    def append_event(self, key: str, event: dict, expected_version: int | None = None) -> GatewayResult:
        # A retried POST could double-append; the version check turns the
        # duplicate into a 409 instead.
        return self.request(
            "POST",
            f"/batches/{quote(key, safe='')}/events",
            json_body={"event": event, "expectedVersion": expected_version},
        )
