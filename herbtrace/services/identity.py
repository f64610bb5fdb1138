"""
Identity: who is calling, as told by the external identity provider.

Access token (HS256):
{
    "sub": <user_id>,
    "role": "processor",
    "permissions": ["batch:submit", ...],
    "type": "access",
    "iat": <issued_at>,
    "exp": <expires_at>,
    "jti": <unique_id>
}

The workflow core trusts ``role`` verbatim.  Tokens are normally minted by
the identity provider; ``issue_access_token`` exists for development,
the demo seeder and tests.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import jwt
from flask import current_app, g

from herbtrace.core.exceptions import PermissionDenied
from herbtrace.models.traceability import Role

DEFAULT_ACCESS_EXPIRES = 900       # 15 minutes
ALGORITHM = "HS256"


@dataclass(frozen=True)
class Identity:
    user_id: str
    role: str
    permissions: tuple = ()

    def to_dict(self) -> dict:
        return {"userId": self.user_id, "role": self.role, "permissions": list(self.permissions)}


def _get_secret():
    return current_app.config.get("JWT_SECRET_KEY") or current_app.config["SECRET_KEY"]


def issue_access_token(user_id: str, role: str, permissions=()) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "role": role,
        "permissions": list(permissions),
        "type": "access",
        "iat": now,
        "exp": now + timedelta(seconds=current_app.config.get("JWT_ACCESS_EXPIRES", DEFAULT_ACCESS_EXPIRES)),
        "jti": str(uuid.uuid4()),
    }
    return jwt.encode(payload, _get_secret(), algorithm=ALGORITHM)


def decode_access_token(token: str) -> dict:
    """Decode and verify an access token.

    Raises:
        jwt.ExpiredSignatureError, jwt.InvalidTokenError
    """
    payload = jwt.decode(token, _get_secret(), algorithms=[ALGORITHM])
    if payload.get("type") != "access":
        raise jwt.InvalidTokenError("Not an access token")
    return payload


def current_identity() -> Identity | None:
    return getattr(g, "identity", None)


def require_portal(role: Role) -> None:
    """Refuse the request when a known caller belongs to another portal.

    Anonymous requests pass; the endpoint then acts as ``role``.
    """
    ident = current_identity()
    if ident is None:
        return
    if Role.parse(ident.role) is not role:
        raise PermissionDenied(ident.role, f"act through the {role.value} portal")
