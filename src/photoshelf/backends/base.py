"""Protocol definitions for storage backends."""

from __future__ import annotations

from datetime import datetime
from typing import Iterable, Optional, Protocol

from photoshelf.models.domain import StoredPhotoRecord

ERROR_KINDS = (
    "not_found",
    "permission",
    "conflict",
    "too_large",
    "invalid_name",
    "quota",
    "unavailable",
    "unknown",
)


class StorageError(Exception):
    """A backend refused or failed an operation.

    ``kind`` is one of ``ERROR_KINDS``; ``status`` is the HTTP status when the
    backend speaks HTTP. ``str(error)`` is the backend's own message.
    """

    def __init__(self, message: str, kind: str = "unknown", status: Optional[int] = None):
        super().__init__(message)
        self.kind = kind if kind in ERROR_KINDS else "unknown"
        self.status = status

    def __repr__(self) -> str:
        return f"StorageError({str(self)!r}, kind={self.kind!r}, status={self.status})"


def error_kind_for_status(status: int, body: str = "") -> str:
    """Map an HTTP status (and response text) onto an error kind."""
    if status == 404:
        return "not_found"
    if status in (401, 403):
        return "permission"
    if status == 409:
        return "conflict"
    if status == 413:
        return "too_large"
    if status == 400 and "pattern" in body.lower():
        return "invalid_name"
    if status == 400 and "exists" in body.lower():
        return "conflict"
    if status in (402, 507) or "quota" in body.lower():
        return "quota"
    if status >= 500:
        return "unavailable"
    return "unknown"


def decode_json(response, default=None):
    """Body of a JSON response, or ``default`` for a null body.

    Raises:
        StorageError: kind ``unavailable`` when the body is not JSON
    """
    try:
        data = response.json()
    except ValueError as e:
        raise StorageError(f"Malformed response from storage: {e}", kind="unavailable",
                           status=response.status_code) from e
    return default if data is None else data


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp as returned by the storage APIs."""
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


class StorageBackend(Protocol):
    """Interface the orchestrator and gallery consume.

    Every call may block on I/O. ``list`` may fetch lazily page by page, so a
    failure can surface part-way through iteration.
    """

    def list(self) -> Iterable[StoredPhotoRecord]:
        """Yield every stored photo record."""
        ...

    def put(self, name: str, data: bytes, content_type: str) -> StoredPhotoRecord:
        """Store ``data`` under ``name``. Must not overwrite an existing object.

        Raises:
            StorageError: on any rejection or transport failure
        """
        ...

    def remove(self, name: str) -> None:
        """Delete the object stored under ``name``.

        Raises:
            StorageError: if it cannot be deleted
        """
        ...

    def setup(self) -> str:
        """Create the bucket/folder if needed; returns a human-readable status."""
        ...

    def health_check(self) -> bool:
        ...
