"""Snapshot bookkeeping and the append-only activity log."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from cmsync.domain.model.enums import ActivityStatus, SnapshotActivityType


@dataclass(eq=False, kw_only=True)
class Snapshot:
    merge_request_id: int
    target_instance: str
    schema_name: str
    created_at: datetime | None = None
    id: int | None = None


@dataclass(eq=False, kw_only=True)
class SnapshotActivity:
    merge_request_id: int
    activity_type: SnapshotActivityType
    status: ActivityStatus
    schema_name: str | None = None
    message: str | None = None
    created_at: datetime | None = None
    id: int | None = None


@dataclass(eq=False, kw_only=True)
class SnapshotMappingRow:
    """Document mapping row as it existed when a snapshot was taken."""

    snapshot_id: int
    content_type: str
    source_document_id: str
    source_id: int | None = None
    source_updated_at: str | None = None
    source_hash: str | None = None
    target_id: int | None = None
    target_document_id: str | None = None
    target_updated_at: str | None = None
    target_hash: str | None = None
    locale: str | None = None
    id: int | None = None
