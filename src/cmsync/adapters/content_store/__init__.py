"""Public interface for the content-store HTTP adapter."""

from __future__ import annotations

from .client import ContentStoreClient, populate_params
from .translator import parse_attribute, parse_content_type, parse_entry, parse_file, unique_key

__all__ = [
    "ContentStoreClient",
    "parse_attribute",
    "parse_content_type",
    "parse_entry",
    "parse_file",
    "populate_params",
    "unique_key",
]
