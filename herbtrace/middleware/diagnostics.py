"""
Startup diagnostics: runs once when the Flask app starts.

Checks the database and the ledger backend and logs a summary banner.
"""

import logging
import sys

from flask import Flask

from herbtrace.ledger.facade import get_ledger
from herbtrace.models import db

logger = logging.getLogger(__name__)


def run_startup_diagnostics(app: Flask):
    """Run diagnostic checks during app startup (inside app context)."""
    if app.config.get("TESTING"):
        return  # skip during tests for speed

    issues: list[str] = []

    with app.app_context():
        py = f"{sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}"

        # ── Database connectivity ────────────────────────────────────
        db_status = "ok"
        db_uri = str(app.config.get("SQLALCHEMY_DATABASE_URI", ""))
        db_type = "PostgreSQL" if "postgresql" in db_uri else "SQLite" if "sqlite" in db_uri else "unknown"
        try:
            db.session.execute(db.text("SELECT 1"))
        except Exception as exc:
            db_status = "FAILED"
            issues.append(f"Database unreachable: {exc}")

        # ── Ledger ───────────────────────────────────────────────────
        status = get_ledger().status()
        ledger_line = status.mode + (" (DEGRADED)" if status.degraded else "")
        if status.degraded:
            issues.append(
                f"Ledger backend '{status.primary_mode}' unavailable, serving from "
                f"'{status.mode}': {status.last_error}"
            )
        tx_ids = "genuine" if status.supports_transaction_ids else "not available"

        banner = f"""
╔══════════════════════════════════════════════════════════════╗
║  Herb Traceability Service: Startup Diagnostics              ║
╠══════════════════════════════════════════════════════════════╣
║  Python      : {py:<46s}║
║  Debug       : {str(app.debug):<46s}║
║  Database    : {f'{db_type} ({db_status})':<46s}║
║  Ledger      : {ledger_line:<46s}║
║  Batches     : {str(status.batch_count):<46s}║
║  Tx ids      : {tx_ids:<46s}║
╚══════════════════════════════════════════════════════════════╝"""
        logger.info(banner)

        if issues:
            logger.warning("Startup issues detected:")
            for issue in issues:
                logger.warning("  ⚠ %s", issue)
        else:
            logger.info("✅ All startup checks passed")
