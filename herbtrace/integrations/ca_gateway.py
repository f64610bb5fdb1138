"""
Certificate authority gateway.

The CA-connected ledger mode only needs one thing from the certificate
authority: proof that it is reachable and answers with its identity.
``probe()`` calls ``GET <CA_URL>/cainfo`` and returns the CA name and
version when the call succeeds.

Usage:
    gw = CAGateway("https://localhost:7054", timeout=5, verify=False)
    info = gw.probe()
    if info.ok:
        ca_name = info.data["caName"]
"""

from __future__ import annotations

import logging

from herbtrace.integrations.gateway import GatewayResult, HTTPGateway

logger = logging.getLogger(__name__)


class CAGateway(HTTPGateway):
    name = "ca"

    def probe(self) -> GatewayResult:
        """Fetch CA info.  ``data`` is normalised to {caName, version}."""
        result = self.request("GET", "/cainfo", retries=0)
        if not result.ok:
            logger.info("CA probe failed url=%s error=%s", self.base_url, result.error)
            return result

        # Fabric CA wraps the payload as {"result": {...}, "success": true}
        body = result.data if isinstance(result.data, dict) else {}
        info = body.get("result") if isinstance(body.get("result"), dict) else body
        result.data = {
            "caName": info.get("CAName") or info.get("caName") or "unknown",
            "version": info.get("Version") or info.get("version"),
        }
        return result
