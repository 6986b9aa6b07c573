"""Dependency graph and sync planning."""

from __future__ import annotations

from .graph import strongly_connected_components, topological_levels
from .planner import (
    REASON_NOT_IN_COMPARISON,
    REASON_NOT_SELECTED,
    CircularEdge,
    MissingDependency,
    PlanEdge,
    PlanItem,
    SyncPlan,
    compute_sync_plan,
    plan_sort_key,
)

__all__ = [
    "REASON_NOT_IN_COMPARISON",
    "REASON_NOT_SELECTED",
    "CircularEdge",
    "MissingDependency",
    "PlanEdge",
    "PlanItem",
    "SyncPlan",
    "compute_sync_plan",
    "plan_sort_key",
    "strongly_connected_components",
    "topological_levels",
]
