"""Merge request workflow services."""

from __future__ import annotations

from .content import NOT_FOUND_FOR_DELETION, ContentApplier, describe_failure
from .files import FileApplier
from .lifecycle import (
    LOCKED_STATES,
    TRANSITIONS,
    advance_to_at_least,
    can_transition,
    ensure_mutable,
    ensure_transition,
    reached,
)
from .orchestrator import ADVANCEABLE, MergeOrchestrator
from .run import SKIPPED_MESSAGE, ItemOutcome, MergeRun
from .selection import SelectionService, load_stored_report
from .snapshot import SnapshotManager, snapshot_name

__all__ = [
    "ADVANCEABLE",
    "LOCKED_STATES",
    "NOT_FOUND_FOR_DELETION",
    "SKIPPED_MESSAGE",
    "TRANSITIONS",
    "ContentApplier",
    "FileApplier",
    "ItemOutcome",
    "MergeOrchestrator",
    "MergeRun",
    "SelectionService",
    "SnapshotManager",
    "advance_to_at_least",
    "can_transition",
    "describe_failure",
    "ensure_mutable",
    "ensure_transition",
    "load_stored_report",
    "reached",
    "snapshot_name",
]
