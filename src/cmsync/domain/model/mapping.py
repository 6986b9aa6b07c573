"""Cross-instance correlation rows."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass(eq=False, kw_only=True)
class DocumentMapping:
    """Correlates a source entry with its counterpart on the target instance."""

    source_instance: str
    target_instance: str
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
    created_at: datetime | None = None
    updated_at: datetime | None = None
    id: int | None = None

    @property
    def is_resolved(self) -> bool:
        return self.target_document_id is not None


@dataclass(eq=False, kw_only=True)
class Exclusion:
    """Removes an entry (or one of its fields) from comparison for an instance pair."""

    source_instance: str
    target_instance: str
    content_type: str
    document_id: str
    field_path: str | None = None
    created_at: datetime | None = None
    id: int | None = None

    @property
    def excludes_document(self) -> bool:
        return self.field_path is None
