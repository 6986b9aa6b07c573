"""Payload normalisation shared by fetching, comparison and execution."""

from __future__ import annotations

import hashlib
import json
from typing import TYPE_CHECKING, Any, Final

if TYPE_CHECKING:
    from collections.abc import Iterable

TECHNICAL_FIELDS: Final[frozenset[str]] = frozenset(
    {
        "id",
        "documentId",
        "document_id",
        "createdAt",
        "created_at",
        "updatedAt",
        "updated_at",
        "publishedAt",
        "published_at",
        "createdBy",
        "created_by",
        "created_by_id",
        "updatedBy",
        "updated_by",
        "updated_by_id",
        "localizations",
    }
)
COMPARE_IGNORED_FIELDS: Final[frozenset[str]] = TECHNICAL_FIELDS | {"locale"}


def clean_value(value: Any, *, ignored: frozenset[str] = COMPARE_IGNORED_FIELDS) -> Any:
    if isinstance(value, dict):
        return {
            key: clean_value(item, ignored=ignored)
            for key, item in sorted(value.items())
            if key not in ignored
        }
    if isinstance(value, list):
        return [clean_value(item, ignored=ignored) for item in value]
    return value


def clean_payload(raw: dict[str, Any], *, link_fields: Iterable[str] = ()) -> dict[str, Any]:
    """Strip technical fields recursively and drop link fields (they are compared as links)."""

    excluded = set(link_fields)
    return {
        key: clean_value(value)
        for key, value in sorted(raw.items())
        if key not in COMPARE_IGNORED_FIELDS and key not in excluded
    }


def without_field_path(payload: dict[str, Any], field_path: str) -> dict[str, Any]:
    """Return a copy of ``payload`` without the dotted ``field_path``."""

    head, _, rest = field_path.partition(".")
    if head not in payload:
        return payload
    copied = dict(payload)
    if not rest:
        del copied[head]
        return copied
    nested = copied[head]
    if isinstance(nested, dict):
        copied[head] = without_field_path(nested, rest)
    elif isinstance(nested, list):
        copied[head] = [
            without_field_path(item, rest) if isinstance(item, dict) else item for item in nested
        ]
    return copied


def canonical_json(payload: Any) -> str:
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def payload_hash(payload: dict[str, Any]) -> str:
    return hashlib.sha256(canonical_json(payload).encode("utf-8")).hexdigest()


def strip_for_write(raw: dict[str, Any], *, link_fields: Iterable[str] = ()) -> dict[str, Any]:
    """Payload suitable for create/update calls: technical fields and links removed."""

    excluded = set(link_fields)
    return {
        key: clean_value(value, ignored=TECHNICAL_FIELDS)
        for key, value in raw.items()
        if key not in COMPARE_IGNORED_FIELDS and key not in excluded
    }
