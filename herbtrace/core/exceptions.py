"""
Service-wide exception hierarchy.

Workflow outcomes (access denied, already acted, no transition) are NOT
exceptions: the decision functions return structured values for those and
the blueprints translate them into 4xx responses.  The types below are
reserved for conditions a caller cannot decide its way out of: a missing
batch, a malformed payload, a storage backend that refused the write, or a
stored record that no longer decodes.

Blueprints register handlers against these types once (see
``herbtrace/__init__.py``) and get consistent HTTP status codes everywhere.

Usage:
    from herbtrace.core.exceptions import NotFoundError, StorageUnavailable

    raise NotFoundError(resource="Batch", resource_id="QR_COL-1")
    raise StorageUnavailable("ledger gateway timed out", backend="network")
"""


class NotFoundError(Exception):
    """Raised when a batch key is unknown to the active ledger store.

    Args:
        resource: Human-readable entity name (e.g. "Batch").
        resource_id: The key that was looked up.
    """

    def __init__(self, resource: str, resource_id: str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" {resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when a submitted payload is malformed.

    Covers structural problems only (missing required field, wrong type).
    Whether the submission is *allowed* is a workflow decision, not a
    validation error.

    Args:
        message: Human-readable description returned to the client.
        details: Optional per-field error map, e.g. {"qrCode": "required"}.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised when a batch key that must be new already exists.

    Args:
        resource: Entity name.
        field: Field holding the conflicting value.
        value: The conflicting value.
    """

    def __init__(self, resource: str, field: str, value: str) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        super().__init__(f"{resource} with {field}='{value}' already exists")


class StorageUnavailable(Exception):
    """Raised by a ledger store that cannot serve a read or accept a write.

    The ledger facade catches this from the primary store and degrades to
    the in-memory fallback.  When the fallback itself raises it the error
    reaches the blueprint and becomes a 503.

    Args:
        message: What failed.
        backend: Mode name of the store that raised ("network", "database"...).
    """

    def __init__(self, message: str, backend: str | None = None) -> None:
        self.backend = backend
        super().__init__(message)


class StorageExhausted(StorageUnavailable):
    """Raised by an in-memory store that has reached its size limits.

    The store is healthy and still holds every batch, so the facade never
    degrades on this: the write fails and the request gets a 503.
    """


class ConcurrentWriteError(Exception):
    """Raised when an append carries a stale expected version for its batch."""

    def __init__(self, batch_key: str, expected: int, actual: int) -> None:
        self.batch_key = batch_key
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Batch {batch_key} is at version {actual}, append expected {expected}"
        )


class CorruptedRecordError(Exception):
    """Raised when a stored event payload cannot be decoded.

    Never surfaced verbatim to clients: the app-level handler logs it and
    returns a generic 500.
    """


class PermissionDenied(Exception):
    """Raised when the caller's role may not perform an action at all.

    Distinct from a workflow ACCESS_DENIED decision: this is about who is
    calling (wrong portal, role without create rights), not about the
    batch's current status.
    """

    def __init__(self, role: str | None, action: str) -> None:
        self.role = role
        self.action = action
        super().__init__(f"Role '{role}' is not allowed to {action}")
