"""Error taxonomy for comparison, planning and merge execution."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from cmsync.domain.model import MergeRequestStatus


class SyncError(RuntimeError):
    """Base class for domain errors."""


class SchemaIncompatible(SyncError):
    """Schemas of the two instances differ; surfaced as a verdict, never fatal on its own."""

    def __init__(self, message: str, *, missing_in_target: tuple[str, ...] = ()) -> None:
        super().__init__(message)
        self.missing_in_target = missing_in_target


class NetworkError(SyncError):
    """Remote call failed after the client exhausted its retries."""

    def __init__(self, message: str, *, status_code: int | None = None, body: str | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class ConflictError(SyncError):
    """The target rejected a create/update/delete."""

    def __init__(self, message: str, *, status_code: int | None = None, body: str | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class CycleDetected(SyncError):
    def __init__(self, message: str, *, members: tuple[str, ...] = ()) -> None:
        super().__init__(message)
        self.members = members


class SnapshotFailure(SyncError):
    """Snapshot take/restore failed; a merge must not proceed without one."""


class ConfirmationRequired(SyncError):
    """An irreversible operation was requested without explicit confirmation."""


class InvalidStateTransition(SyncError):
    def __init__(
        self,
        message: str,
        *,
        current: MergeRequestStatus | None = None,
        requested: MergeRequestStatus | None = None,
    ) -> None:
        super().__init__(message)
        self.current = current
        self.requested = requested


class MergeRequestNotFound(SyncError):
    def __init__(self, merge_request_id: int) -> None:
        super().__init__(f"Merge request {merge_request_id} not found")
        self.merge_request_id = merge_request_id


class ComparisonRequired(SyncError):
    """An operation needs a stored comparison that does not exist yet."""


class InvalidSelection(SyncError, ValueError):
    """A selection does not correspond to an actionable diff item."""


class ContentStoreError(SyncError):
    """A content-store instance answered with an error status."""

    def __init__(self, message: str, *, status_code: int | None = None, body: str | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


def classify_remote_failure(exc: Exception) -> SyncError:
    """Map a failed remote call to ``ConflictError`` (4xx) or ``NetworkError``."""

    if isinstance(exc, (ConflictError, NetworkError)):
        return exc
    if isinstance(exc, ContentStoreError):
        if exc.status_code is not None and 400 <= exc.status_code < 500:
            return ConflictError(str(exc), status_code=exc.status_code, body=exc.body)
        return NetworkError(str(exc), status_code=exc.status_code, body=exc.body)
    return NetworkError(f"{type(exc).__name__}: {exc}")


class RecordNotFound(SyncError, LookupError):
    """A mapping, exclusion or snapshot does not exist or belongs to another instance pair."""
