"""Persisted fingerprint cache rows."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from cmsync.domain.model.enums import FingerprintMethod


@dataclass(eq=False, kw_only=True)
class FingerprintCacheEntry:
    instance: str
    document_id: str
    updated_at: str
    value: str
    method: FingerprintMethod
    size_bytes: int | None = None
    created_at: datetime | None = None
    last_used_at: datetime | None = None
    id: int | None = None
