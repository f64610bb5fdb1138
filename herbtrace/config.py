"""
Herb Traceability Service
Configuration classes for Flask App Factory.

Usage:
    config_name = os.getenv("APP_ENV", "development")
    app.config.from_object(config[config_name])
"""

import os
import secrets

basedir = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))

_SQLITE_DEV = f"sqlite:///{os.path.join(basedir, 'instance', 'herbtrace_dev.db')}"
_SQLITE_TEST = "sqlite:///:memory:"

# Generate a random key for development; production MUST use a stable env var
_DEV_SECRET = secrets.token_hex(32)


def _int_or_none(name: str) -> int | None:
    raw = os.getenv(name, "").strip()
    return int(raw) if raw else None


def _normalise_db_url(raw: str) -> str:
    # Heroku-style postgres:// is rejected by SQLAlchemy 2.0
    return raw.replace("postgres://", "postgresql://", 1)


class Config:
    """Base configuration shared across all environments."""

    SECRET_KEY = os.getenv("SECRET_KEY", _DEV_SECRET)
    JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY")
    JWT_ACCESS_EXPIRES = int(os.getenv("JWT_ACCESS_EXPIRES", "900"))
    DEBUG = False
    TESTING = False

    # SQLAlchemy
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {"pool_pre_ping": True}

    # Rate limiter storage
    REDIS_URL = os.getenv("REDIS_URL", "memory://")

    # CORS
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")

    # ── Ledger ───────────────────────────────────────────────────────
    # memory | database | ca | network | auto
    LEDGER_BACKEND = os.getenv("LEDGER_BACKEND", "memory")
    LEDGER_TIMEOUT_SECONDS = float(os.getenv("LEDGER_TIMEOUT_SECONDS", "5"))
    LEDGER_CONNECT_RETRIES = int(os.getenv("LEDGER_CONNECT_RETRIES", "3"))
    LEDGER_CONNECT_RETRY_DELAY = float(os.getenv("LEDGER_CONNECT_RETRY_DELAY", "2"))
    LEDGER_GATEWAY_URL = os.getenv("LEDGER_GATEWAY_URL")
    LEDGER_GATEWAY_TOKEN = os.getenv("LEDGER_GATEWAY_TOKEN")
    CA_URL = os.getenv("CA_URL")
    CA_VERIFY_TLS = os.getenv("CA_VERIFY_TLS", "true").lower() == "true"
    # Limits of the in-memory store (None = unbounded)
    LEDGER_MAX_BATCHES = _int_or_none("LEDGER_MAX_BATCHES")
    LEDGER_MAX_EVENTS_PER_BATCH = _int_or_none("LEDGER_MAX_EVENTS_PER_BATCH")


class DevelopmentConfig(Config):
    """Development environment configuration."""

    DEBUG = True
    _raw_db_url = os.getenv("DATABASE_URL", "")
    SQLALCHEMY_DATABASE_URI = _normalise_db_url(_raw_db_url) if _raw_db_url else _SQLITE_DEV
    # Local CA of the development network (self-signed)
    CA_VERIFY_TLS = os.getenv("CA_VERIFY_TLS", "false").lower() == "true"


class TestingConfig(Config):
    """Testing environment configuration."""

    TESTING = True
    SQLALCHEMY_DATABASE_URI = os.getenv("TEST_DATABASE_URL", _SQLITE_TEST)
    SQLALCHEMY_ENGINE_OPTIONS = {}
    RATELIMIT_ENABLED = False
    JWT_SECRET_KEY = "test-jwt-secret"
    LEDGER_BACKEND = "memory"
    LEDGER_CONNECT_RETRIES = 1
    LEDGER_CONNECT_RETRY_DELAY = 0
    LEDGER_MAX_BATCHES = None
    LEDGER_MAX_EVENTS_PER_BATCH = None


class ProductionConfig(Config):
    """Production environment configuration."""

    DEBUG = False
    _raw_db_url = os.getenv("DATABASE_URL", "")
    SQLALCHEMY_DATABASE_URI = _normalise_db_url(_raw_db_url) if _raw_db_url else None
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "")  # Must be set explicitly in production
    LEDGER_BACKEND = os.getenv("LEDGER_BACKEND", "auto")

    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_size": 5,
        "max_overflow": 10,
        "pool_recycle": 300,
        "pool_timeout": 20,
    }

    def __init__(self):
        if not self.SQLALCHEMY_DATABASE_URI:
            raise RuntimeError("DATABASE_URL environment variable is required in production")
        if not os.getenv("SECRET_KEY"):
            raise RuntimeError("SECRET_KEY environment variable must be set in production")


# Configuration mapping: environment name -> config class
config = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
    "default": DevelopmentConfig,
}
