"""Merge request aggregate and its persisted satellites."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime

from cmsync.domain.model.enums import Direction, MergeDataKind, MergeRequestStatus


def utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(eq=False, kw_only=True)
class MergeRequest:
    """One source to target merge, driven through ``MergeRequestStatus``."""

    name: str
    source_instance: str
    target_instance: str
    description: str | None = None
    status: MergeRequestStatus = MergeRequestStatus.CREATED
    created_at: datetime | None = None
    updated_at: datetime | None = None
    id: int | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in {MergeRequestStatus.COMPLETED, MergeRequestStatus.FAILED}


@dataclass(eq=False, kw_only=True)
class Selection:
    """A human decision to apply one create/update/delete."""

    merge_request_id: int
    table_name: str
    content_type: str
    document_id: str
    direction: Direction
    created_at: datetime | None = None
    sync_success: bool | None = None
    sync_failure_response: str | None = None
    sync_date: datetime | None = None
    id: int | None = None

    @property
    def key(self) -> tuple[str, str, Direction]:
        return (self.table_name, self.document_id, self.direction)

    @property
    def label(self) -> str:
        return f"{self.table_name}:{self.document_id}"


@dataclass(eq=False, kw_only=True)
class MergeRequestData:
    """Cached JSON payload (schema verdict, prefetch, comparison) of a merge request."""

    merge_request_id: int
    kind: MergeDataKind
    payload: str
    updated_at: datetime | None = None
    id: int | None = None
