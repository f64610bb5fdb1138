"""
Herb Traceability Service
Flask Application Factory.

Usage:
    from herbtrace import create_app
    app = create_app()           # defaults to "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

import click
from flask import Flask
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate

from herbtrace.config import config
from herbtrace.core.exceptions import (
    ConcurrentWriteError,
    ConflictError,
    CorruptedRecordError,
    NotFoundError,
    PermissionDenied,
    StorageUnavailable,
    ValidationError,
)
from herbtrace.ledger import get_ledger, init_ledger
from herbtrace.middleware.diagnostics import run_startup_diagnostics
from herbtrace.middleware.identity import init_identity_middleware
from herbtrace.middleware.logging_config import configure_logging
from herbtrace.middleware.rate_limiter import init_rate_limits
from herbtrace.middleware.security_headers import init_security_headers
from herbtrace.middleware.timing import init_request_timing
from herbtrace.models import db
from herbtrace.utils.errors import E, api_error

logger = logging.getLogger(__name__)

migrate = Migrate()
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[],                     # no global limit, applied per blueprint
    storage_uri=os.getenv("REDIS_URL", "memory://"),  # Redis in production, memory for dev
)


def create_app(config_name=None):
    """
    Create and configure the Flask application.

    Args:
        config_name: Configuration environment name.
                     One of: "development", "testing", "production".
                     Defaults to APP_ENV env var, or "development" if unset.

    Returns:
        Configured Flask application instance.
    """
    if config_name is None:
        config_name = os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    # Instantiated so ProductionConfig can refuse to start without its env vars
    app.config.from_object(config[config_name]())
    os.makedirs(app.instance_path, exist_ok=True)

    # ── Structured logging (must be first) ───────────────────────────────
    configure_logging(app)

    # ── Extensions ───────────────────────────────────────────────────────
    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)
    cors_origins = app.config.get("CORS_ORIGINS", "*")
    if cors_origins and cors_origins != "*":
        CORS(app, origins=[o.strip() for o in cors_origins.split(",") if o.strip()])
    else:
        CORS(app)

    # ── Security headers (CSP, HSTS, X-Frame-Options, etc.) ─────────────
    init_security_headers(app)

    # ── Request timing middleware ────────────────────────────────────────
    init_request_timing(app)

    # ── Caller identity (JWT or identity-provider headers) ───────────────
    init_identity_middleware(app)

    # ── Request guards (input length + Content-Type) ─────────────────────
    app.config.setdefault("MAX_CONTENT_LENGTH", 1 * 1024 * 1024)  # 1 MB

    @app.before_request
    def _guard_request():
        from flask import abort, request as _req
        if _req.method in ("POST", "PUT", "PATCH") and _req.path.startswith("/api/"):
            ct = _req.content_type or ""
            if _req.data and "json" not in ct:
                abort(415, description="Content-Type must be application/json")

    # ── Import models so Alembic can detect them ─────────────────────────
    from herbtrace.models import ledger as _ledger_models  # noqa: F401

    # ── Auto-create tables (CREATE IF NOT EXISTS) ────────────────────────
    with app.app_context():
        try:
            db.create_all()
            app.logger.info("db.create_all() completed successfully")
        except Exception as e:
            app.logger.warning("db.create_all() failed: %s", e)

    # ── Ledger (after tables exist, the database backend needs them) ─────
    init_ledger(app)

    # ── Blueprints ───────────────────────────────────────────────────────
    from herbtrace.blueprints.batch_bp import batch_bp
    from herbtrace.blueprints.health_bp import health_bp
    from herbtrace.blueprints.portal_bp import collection_bp, portal_bp
    from herbtrace.blueprints.workflow_bp import workflow_bp

    app.register_blueprint(health_bp)
    app.register_blueprint(collection_bp)
    app.register_blueprint(portal_bp)
    app.register_blueprint(workflow_bp)
    app.register_blueprint(batch_bp)

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("seed-demo-batches")
    @click.option("--count", default=5, show_default=True, help="Number of batches to create.")
    def seed_demo_batches_cmd(count):
        """Create demo batches at assorted lifecycle stages."""
        from herbtrace.services.demo_seed import seed_demo_batches
        keys = seed_demo_batches(count)
        click.echo(f"Seeded {len(keys)} demo batches.")
        for key in keys:
            click.echo(f"  {key}")

    @app.cli.command("ledger-status")
    def ledger_status_cmd():
        """Print the ledger connection status."""
        status = get_ledger().status()
        for name, value in status.to_dict().items():
            click.echo(f"{name:<24} {value}")

    # ── Error handlers ───────────────────────────────────────────────────
    @app.errorhandler(ValidationError)
    def handle_validation(e):
        code = E.VALIDATION_REQUIRED if set(e.details.values()) == {"required"} else E.VALIDATION_INVALID
        return api_error(code, e.message, details=e.details)

    @app.errorhandler(NotFoundError)
    def handle_not_found(e):
        return api_error(E.NOT_FOUND, str(e))

    @app.errorhandler(ConflictError)
    def handle_conflict(e):
        return api_error(E.CONFLICT_DUPLICATE, str(e), details={e.field: e.value})

    @app.errorhandler(ConcurrentWriteError)
    def handle_concurrent_write(e):
        logger.warning("Concurrent write rejected: %s", e, extra={"batch_key": e.batch_key})
        return api_error(
            E.CONFLICT_STATE,
            "Batch was modified by another submission; reload and retry.",
            details={"qrCode": e.batch_key},
        )

    @app.errorhandler(PermissionDenied)
    def handle_permission_denied(e):
        return api_error(E.FORBIDDEN, str(e))

    @app.errorhandler(StorageUnavailable)
    def handle_storage_unavailable(e):
        logger.error("Ledger storage unavailable: %s", e, extra={"ledger_mode": e.backend})
        return api_error(E.STORAGE_UNAVAILABLE, "Ledger storage is temporarily unavailable.")

    @app.errorhandler(CorruptedRecordError)
    def handle_corrupted(e):
        logger.error("Corrupted ledger record: %s", e, exc_info=True)
        return api_error(E.INTERNAL, "Internal server error")

    @app.errorhandler(404)
    def not_found(e):
        from flask import request
        return {"error": "Not found", "code": E.NOT_FOUND, "path": request.path}, 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return {"error": "Method not allowed"}, 405

    @app.errorhandler(413)
    def payload_too_large(e):
        return {"error": "Request body too large"}, 413

    @app.errorhandler(415)
    def unsupported_media_type(e):
        return {"error": e.description, "code": E.VALIDATION_INVALID}, 415

    @app.errorhandler(429)
    def rate_limited(e):
        return {"error": "Too many requests", "retry_after": e.description}, 429

    @app.errorhandler(500)
    def server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return {"error": "Internal server error", "code": E.INTERNAL}, 500

    # ── Startup diagnostics ──────────────────────────────────────────────
    run_startup_diagnostics(app)

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    return app
