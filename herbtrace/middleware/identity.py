"""
Identity middleware: sets ``g.identity`` for every API request.

Priority order:
  1. Authorization: Bearer <jwt>      →  Identity(sub, role, permissions)
  2. X-User-Id + X-User-Role headers  →  Identity(user_id, role)
  3. neither                          →  g.identity = None (anonymous)

An invalid or expired token does not block the request here; it is
logged and the request continues as anonymous.
"""

import logging

import jwt as pyjwt
from flask import g, request

from herbtrace.services.identity import Identity, decode_access_token

logger = logging.getLogger(__name__)

# Paths that never carry an identity
SKIP_PREFIXES = (
    "/api/v1/health",
)


def init_identity_middleware(app):
    """Register the identity parser as a before_request hook."""

    @app.before_request
    def _resolve_identity():
        g.identity = None

        path = request.path
        if not path.startswith("/api/v1/") or path.startswith(SKIP_PREFIXES):
            return

        auth_header = request.headers.get("Authorization", "")
        if auth_header.startswith("Bearer "):
            try:
                payload = decode_access_token(auth_header[7:])
            except pyjwt.ExpiredSignatureError:
                logger.info("Expired access token on %s", path)
                return
            except pyjwt.InvalidTokenError as exc:
                logger.info("Invalid access token on %s: %s", path, exc)
                return
            g.identity = Identity(
                user_id=str(payload.get("sub")),
                role=str(payload.get("role") or ""),
                permissions=tuple(payload.get("permissions") or ()),
            )
            return

        user_id = request.headers.get("X-User-Id")
        role = request.headers.get("X-User-Role")
        if user_id and role:
            g.identity = Identity(user_id=user_id, role=role.strip().lower())
