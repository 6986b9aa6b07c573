"""SQLAlchemy mapping metadata for the cmsync domain model."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from functools import cache

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Dialect,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Table,
    Text,
    TypeDecorator,
    UniqueConstraint,
    func,
    orm,
)
from sqlalchemy.orm import configure_mappers

from cmsync.domain.model import (
    ActivityStatus,
    Direction,
    DocumentMapping,
    Exclusion,
    FingerprintCacheEntry,
    FingerprintMethod,
    MergeDataKind,
    MergeRequest,
    MergeRequestData,
    MergeRequestStatus,
    Selection,
    Snapshot,
    SnapshotActivity,
    SnapshotActivityType,
    SnapshotMappingRow,
)

log = logging.getLogger(__name__)


class UTCDateTime(TypeDecorator[datetime]):
    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        _ = dialect
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return value.astimezone(UTC)

    def process_result_value(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        _ = dialect
        if value is None:
            return None
        return value if value.tzinfo else value.replace(tzinfo=UTC)


mapper_registry = orm.registry()
mapper_registry.metadata.naming_convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_label)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_label)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}

# Merge requests --------------------------------------------------------------

merge_request_table = Table(
    "merge_request",
    mapper_registry.metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String, nullable=False),
    Column("description", Text, nullable=True),
    Column("source_instance", String, nullable=False),
    Column("target_instance", String, nullable=False),
    Column(
        "status",
        Enum(MergeRequestStatus, native_enum=False, length=32),
        nullable=False,
        default=MergeRequestStatus.CREATED,
    ),
    Column("created_at", UTCDateTime(), nullable=True, server_default=func.now()),
    Column("updated_at", UTCDateTime(), nullable=True, server_default=func.now()),
    Index("ix_merge_request_target_status", "target_instance", "status"),
)

merge_request_selection_table = Table(
    "merge_request_selection",
    mapper_registry.metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column(
        "merge_request_id",
        Integer,
        ForeignKey("merge_request.id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column("table_name", String, nullable=False),
    Column("content_type", String, nullable=False),
    Column("document_id", String, nullable=False),
    Column("direction", Enum(Direction, native_enum=False, length=16), nullable=False),
    Column("created_at", UTCDateTime(), nullable=True, server_default=func.now()),
    Column("sync_success", Boolean, nullable=True),
    Column("sync_failure_response", Text, nullable=True),
    Column("sync_date", UTCDateTime(), nullable=True),
    UniqueConstraint("merge_request_id", "table_name", "document_id", "direction"),
)

merge_request_data_table = Table(
    "merge_request_data",
    mapper_registry.metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column(
        "merge_request_id",
        Integer,
        ForeignKey("merge_request.id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column("kind", Enum(MergeDataKind, native_enum=False, length=16), nullable=False),
    Column("payload", Text, nullable=False),
    Column("updated_at", UTCDateTime(), nullable=True, server_default=func.now()),
    UniqueConstraint("merge_request_id", "kind"),
)

# Cross-instance correlation --------------------------------------------------

document_mapping_table = Table(
    "document_mapping",
    mapper_registry.metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("source_instance", String, nullable=False),
    Column("target_instance", String, nullable=False),
    Column("content_type", String, nullable=False),
    Column("source_id", Integer, nullable=True),
    Column("source_document_id", String, nullable=False),
    Column("source_updated_at", String, nullable=True),
    Column("source_hash", String, nullable=True),
    Column("target_id", Integer, nullable=True),
    Column("target_document_id", String, nullable=True),
    Column("target_updated_at", String, nullable=True),
    Column("target_hash", String, nullable=True),
    Column("locale", String, nullable=True),
    Column("created_at", UTCDateTime(), nullable=True, server_default=func.now()),
    Column("updated_at", UTCDateTime(), nullable=True, server_default=func.now()),
    UniqueConstraint("source_instance", "target_instance", "content_type", "source_document_id"),
    Index(
        "ix_document_mapping_target",
        "source_instance",
        "target_instance",
        "content_type",
        "target_document_id",
    ),
)

sync_exclusion_table = Table(
    "sync_exclusion",
    mapper_registry.metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("source_instance", String, nullable=False),
    Column("target_instance", String, nullable=False),
    Column("content_type", String, nullable=False),
    Column("document_id", String, nullable=False),
    Column("field_path", String, nullable=True),
    Column("created_at", UTCDateTime(), nullable=True, server_default=func.now()),
    Index("ix_sync_exclusion_pair", "source_instance", "target_instance"),
)

file_fingerprint_cache_table = Table(
    "file_fingerprint_cache",
    mapper_registry.metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("instance", String, nullable=False),
    Column("document_id", String, nullable=False),
    Column("updated_at", String, nullable=False),
    Column("value", String, nullable=False),
    Column("method", Enum(FingerprintMethod, native_enum=False, length=32), nullable=False),
    Column("size_bytes", Integer, nullable=True),
    Column("created_at", UTCDateTime(), nullable=True, server_default=func.now()),
    Column("last_used_at", UTCDateTime(), nullable=True),
    UniqueConstraint("instance", "document_id"),
)

# Snapshots -------------------------------------------------------------------

merge_request_snapshot_table = Table(
    "merge_request_snapshot",
    mapper_registry.metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("merge_request_id", Integer, nullable=False, index=True),
    Column("target_instance", String, nullable=False, index=True),
    Column("schema_name", String, nullable=False, unique=True),
    Column("created_at", UTCDateTime(), nullable=True, server_default=func.now()),
)

snapshot_activity_table = Table(
    "snapshot_activity",
    mapper_registry.metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("merge_request_id", Integer, nullable=False, index=True),
    Column(
        "activity_type",
        Enum(SnapshotActivityType, native_enum=False, length=16),
        nullable=False,
    ),
    Column("status", Enum(ActivityStatus, native_enum=False, length=16), nullable=False),
    Column("schema_name", String, nullable=True),
    Column("message", Text, nullable=True),
    Column("created_at", UTCDateTime(), nullable=True, server_default=func.now()),
)

snapshot_mapping_row_table = Table(
    "snapshot_mapping_row",
    mapper_registry.metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column(
        "snapshot_id",
        Integer,
        ForeignKey("merge_request_snapshot.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    ),
    Column("content_type", String, nullable=False),
    Column("source_id", Integer, nullable=True),
    Column("source_document_id", String, nullable=False),
    Column("source_updated_at", String, nullable=True),
    Column("source_hash", String, nullable=True),
    Column("target_id", Integer, nullable=True),
    Column("target_document_id", String, nullable=True),
    Column("target_updated_at", String, nullable=True),
    Column("target_hash", String, nullable=True),
    Column("locale", String, nullable=True),
)


@cache
def start_mappers() -> orm.registry:
    """Configure SQLAlchemy mappers for the domain model."""

    log.info("Starting SQLAlchemy mappers")

    mapper_registry.map_imperatively(MergeRequest, merge_request_table)
    mapper_registry.map_imperatively(Selection, merge_request_selection_table)
    mapper_registry.map_imperatively(MergeRequestData, merge_request_data_table)
    mapper_registry.map_imperatively(DocumentMapping, document_mapping_table)
    mapper_registry.map_imperatively(Exclusion, sync_exclusion_table)
    mapper_registry.map_imperatively(FingerprintCacheEntry, file_fingerprint_cache_table)
    mapper_registry.map_imperatively(Snapshot, merge_request_snapshot_table)
    mapper_registry.map_imperatively(SnapshotActivity, snapshot_activity_table)
    mapper_registry.map_imperatively(SnapshotMappingRow, snapshot_mapping_row_table)

    configure_mappers()
    return mapper_registry
