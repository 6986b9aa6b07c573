"""Domain model for content reconciliation."""

from __future__ import annotations

from .comparison import (
    ComparisonReport,
    ComparisonResult,
    EntryRelationship,
    FileComparisonResult,
)
from .content import (
    ContentEntry,
    EntryMetadata,
    EntryRef,
    FileAsset,
    FileMetadata,
    Fingerprint,
    Folder,
    Link,
    Page,
)
from .enums import (
    DIRECTION_BY_STATE,
    FILE_CONTENT_TYPE,
    FILES_TABLE,
    ActivityStatus,
    CompareMode,
    CompareState,
    ContentKind,
    Direction,
    FingerprintMethod,
    MergeDataKind,
    MergeRequestStatus,
    ProgressStatus,
    SnapshotActivityType,
)
from .fingerprint import FingerprintCacheEntry
from .mapping import DocumentMapping, Exclusion
from .merge_request import MergeRequest, MergeRequestData, Selection, utcnow
from .schema import (
    Attribute,
    ComponentAttribute,
    ContentTypeRef,
    ContentTypeSchema,
    DynamicZoneAttribute,
    EnumerationAttribute,
    MediaAttribute,
    RelationAttribute,
    ScalarAttribute,
    SchemaCatalog,
    UnknownAttribute,
)
from .snapshot import Snapshot, SnapshotActivity, SnapshotMappingRow

__all__ = [
    "DIRECTION_BY_STATE",
    "FILES_TABLE",
    "FILE_CONTENT_TYPE",
    "ActivityStatus",
    "Attribute",
    "CompareMode",
    "CompareState",
    "ComparisonReport",
    "ComparisonResult",
    "ComponentAttribute",
    "ContentEntry",
    "ContentKind",
    "ContentTypeRef",
    "ContentTypeSchema",
    "Direction",
    "DocumentMapping",
    "DynamicZoneAttribute",
    "EntryMetadata",
    "EntryRef",
    "EntryRelationship",
    "EnumerationAttribute",
    "Exclusion",
    "FileAsset",
    "FileComparisonResult",
    "FileMetadata",
    "Fingerprint",
    "FingerprintCacheEntry",
    "FingerprintMethod",
    "Folder",
    "Link",
    "MediaAttribute",
    "MergeDataKind",
    "MergeRequest",
    "MergeRequestData",
    "MergeRequestStatus",
    "Page",
    "ProgressStatus",
    "RelationAttribute",
    "ScalarAttribute",
    "SchemaCatalog",
    "Selection",
    "Snapshot",
    "SnapshotActivity",
    "SnapshotActivityType",
    "SnapshotMappingRow",
    "UnknownAttribute",
    "utcnow",
]
