"""SQLAlchemy adapter package for cmsync."""

from __future__ import annotations

from .mappings import mapper_registry, start_mappers
from .repositories import (
    SqlAlchemyDocumentMappingRepository,
    SqlAlchemyExclusionRepository,
    SqlAlchemyFingerprintCacheRepository,
    SqlAlchemyMergeRequestDataRepository,
    SqlAlchemyMergeRequestRepository,
    SqlAlchemySelectionRepository,
    SqlAlchemySnapshotRepository,
)
from .snapshot import PostgresSnapshotBackend, SqliteSnapshotBackend, snapshot_backend_for
from .unit_of_work import SqlAlchemySyncUnitOfWork, shutdown, startup

__all__ = [
    "PostgresSnapshotBackend",
    "SqlAlchemyDocumentMappingRepository",
    "SqlAlchemyExclusionRepository",
    "SqlAlchemyFingerprintCacheRepository",
    "SqlAlchemyMergeRequestDataRepository",
    "SqlAlchemyMergeRequestRepository",
    "SqlAlchemySelectionRepository",
    "SqlAlchemySnapshotRepository",
    "SqlAlchemySyncUnitOfWork",
    "SqliteSnapshotBackend",
    "mapper_registry",
    "shutdown",
    "snapshot_backend_for",
    "start_mappers",
    "startup",
]
