"""
Herb Traceability Service
Model package.

``db`` is the shared Flask-SQLAlchemy handle; ``traceability`` holds the
plain domain types (events, batches, workflow tables) and ``ledger`` the
ORM rows used by the database-backed ledger store.
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
