"""Normalised content entries, links and file assets."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any

from cmsync.domain.model.enums import FILES_TABLE, FingerprintMethod


@dataclass(frozen=True, slots=True, kw_only=True)
class Link:
    """Directed reference from an entry to another entry or file."""

    field: str
    target_content_type: str
    target_table: str
    target_id: int | None = None
    target_document_id: str | None = None
    order: int = 0
    relation: str | None = None
    bidirectional: bool = False

    @property
    def is_file(self) -> bool:
        return self.target_table == FILES_TABLE


@dataclass(frozen=True, slots=True, kw_only=True)
class EntryMetadata:
    id: int | None
    document_id: str
    locale: str | None = None
    updated_at: str | None = None
    unique_key: str | None = None


@dataclass(frozen=True, slots=True, kw_only=True)
class ContentEntry:
    """One record of either instance, with its comparison-ready payload."""

    metadata: EntryMetadata
    raw: dict[str, Any] = field(default_factory=dict[str, Any])
    clean: dict[str, Any] = field(default_factory=dict[str, Any])
    content_hash: str = ""
    links: tuple[Link, ...] = ()

    @property
    def document_id(self) -> str:
        return self.metadata.document_id

    @property
    def id(self) -> int | None:
        return self.metadata.id


@dataclass(frozen=True, slots=True)
class Fingerprint:
    value: str
    method: FingerprintMethod


@dataclass(frozen=True, slots=True, kw_only=True)
class FileMetadata:
    id: int
    document_id: str
    name: str
    mime: str | None = None
    ext: str | None = None
    size: float | None = None
    url: str | None = None
    hash: str | None = None
    alternative_text: str | None = None
    caption: str | None = None
    folder_path: str | None = None
    locale: str | None = None
    updated_at: str | None = None


@dataclass(frozen=True, slots=True, kw_only=True)
class FileAsset:
    metadata: FileMetadata
    raw: dict[str, Any] = field(default_factory=dict[str, Any])
    fingerprint: Fingerprint | None = None
    size_bytes: int | None = None

    @property
    def document_id(self) -> str:
        return self.metadata.document_id

    @property
    def id(self) -> int:
        return self.metadata.id

    @property
    def effective_size(self) -> int:
        """Byte size, preferring the measured download size over the reported KB."""

        if self.size_bytes is not None:
            return self.size_bytes
        if self.metadata.size is not None:
            return int(self.metadata.size * 1024)
        return 0

    def with_fingerprint(self, fingerprint: Fingerprint, size_bytes: int) -> FileAsset:
        return replace(self, fingerprint=fingerprint, size_bytes=size_bytes)


@dataclass(frozen=True, slots=True, kw_only=True)
class Folder:
    id: int
    name: str
    path: str
    path_id: int | None = None
    parent_id: int | None = None
    full_path: str = ""


@dataclass(frozen=True, slots=True, kw_only=True)
class EntryRef:
    """Identity of an entry or file created/updated on an instance."""

    id: int | None
    document_id: str
    updated_at: str | None = None


@dataclass(frozen=True, kw_only=True)
class Page[T]:
    items: list[T]
    page: int
    page_count: int
    total: int | None = None
