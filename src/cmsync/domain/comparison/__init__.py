"""Schema compatibility and content comparison."""

from __future__ import annotations

from .engine import (
    ComparisonEngine,
    ComparisonOutcome,
    LinkResolver,
    build_relationships,
    dump_report,
    load_report,
)
from .prefetch import (
    ComparisonPrefetch,
    SidePrefetch,
    dump_prefetch,
    fetch_catalog,
    load_prefetch,
    prefetch_comparison_data,
)
from .schema_check import (
    AttributeMismatch,
    MismatchKind,
    SchemaCompatibility,
    SchemaIncompatibility,
    check_schema_compatibility,
)

__all__ = [
    "AttributeMismatch",
    "ComparisonEngine",
    "ComparisonOutcome",
    "ComparisonPrefetch",
    "LinkResolver",
    "MismatchKind",
    "SchemaCompatibility",
    "SchemaIncompatibility",
    "SidePrefetch",
    "build_relationships",
    "check_schema_compatibility",
    "dump_prefetch",
    "dump_report",
    "fetch_catalog",
    "load_prefetch",
    "load_report",
    "prefetch_comparison_data",
]
