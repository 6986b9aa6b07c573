"""Port definitions (interfaces) for the domain layer."""

from __future__ import annotations

from .content_store import ContentStore, ContentStoreFactory, FileUpload
from .persistence import (
    DocumentMappingRepository,
    ExclusionRepository,
    FingerprintCacheRepository,
    MergeRequestDataRepository,
    MergeRequestRepository,
    Repository,
    SelectionRepository,
    SnapshotRepository,
)
from .snapshot import SnapshotBackend, SnapshotBackendFactory
from .unit_of_work import RepositoryCollection, SyncRepositories, SyncUnitOfWork, UnitOfWork

__all__ = [
    "ContentStore",
    "ContentStoreFactory",
    "DocumentMappingRepository",
    "ExclusionRepository",
    "FileUpload",
    "FingerprintCacheRepository",
    "MergeRequestDataRepository",
    "MergeRequestRepository",
    "Repository",
    "RepositoryCollection",
    "SelectionRepository",
    "SnapshotBackend",
    "SnapshotBackendFactory",
    "SnapshotRepository",
    "SyncRepositories",
    "SyncUnitOfWork",
    "UnitOfWork",
]
