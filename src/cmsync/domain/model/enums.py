"""Domain enums (pure, dependency-light)."""

from __future__ import annotations

from enum import StrEnum


class MergeRequestStatus(StrEnum):
    CREATED = "CREATED"
    SCHEMA_CHECKED = "SCHEMA_CHECKED"
    COMPARED = "COMPARED"
    MERGED_FILES = "MERGED_FILES"
    MERGED_SINGLES = "MERGED_SINGLES"
    MERGED_COLLECTIONS = "MERGED_COLLECTIONS"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class CompareState(StrEnum):
    ONLY_IN_SOURCE = "ONLY_IN_SOURCE"
    ONLY_IN_TARGET = "ONLY_IN_TARGET"
    DIFFERENT = "DIFFERENT"
    IDENTICAL = "IDENTICAL"


class Direction(StrEnum):
    TO_CREATE = "TO_CREATE"
    TO_UPDATE = "TO_UPDATE"
    TO_DELETE = "TO_DELETE"


class ContentKind(StrEnum):
    """Shape of a content type; files are the third pseudo-type."""

    SINGLE = "singleType"
    COLLECTION = "collectionType"
    COMPONENT = "component"
    FILES = "files"


class CompareMode(StrEnum):
    COMPARE = "compare"
    FULL = "full"
    CACHE = "cache"


class FingerprintMethod(StrEnum):
    IMAGE_DHASH64 = "image_dhash64"
    PDF_TEXT_SHA256 = "pdf_text_sha256"
    BYTES_SHA256 = "bytes_sha256"


class SnapshotActivityType(StrEnum):
    TAKE = "TAKE"
    RESTORE = "RESTORE"
    DELETE = "DELETE"


class ActivityStatus(StrEnum):
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


class ProgressStatus(StrEnum):
    START = "START"
    SUCCESS = "SUCCESS"
    ERROR = "ERROR"
    SKIPPED = "SKIPPED"
    COMPLETED = "COMPLETED"


class MergeDataKind(StrEnum):
    """Kinds of cached per-merge-request payloads."""

    SCHEMA = "schema"
    PREFETCH = "prefetch"
    COMPARISON = "comparison"


DIRECTION_BY_STATE: dict[CompareState, Direction] = {
    CompareState.ONLY_IN_SOURCE: Direction.TO_CREATE,
    CompareState.DIFFERENT: Direction.TO_UPDATE,
    CompareState.ONLY_IN_TARGET: Direction.TO_DELETE,
}

FILES_TABLE = "files"
FILE_CONTENT_TYPE = "plugin::upload.file"
