"""Merge request status transitions."""

from __future__ import annotations

from typing import Final

from cmsync.domain.errors import InvalidStateTransition
from cmsync.domain.model import MergeRequest, MergeRequestStatus

TRANSITIONS: Final[dict[MergeRequestStatus, frozenset[MergeRequestStatus]]] = {
    MergeRequestStatus.CREATED: frozenset({MergeRequestStatus.SCHEMA_CHECKED}),
    MergeRequestStatus.SCHEMA_CHECKED: frozenset({MergeRequestStatus.COMPARED}),
    MergeRequestStatus.COMPARED: frozenset({MergeRequestStatus.MERGED_FILES}),
    MergeRequestStatus.MERGED_FILES: frozenset({MergeRequestStatus.MERGED_SINGLES}),
    MergeRequestStatus.MERGED_SINGLES: frozenset({MergeRequestStatus.MERGED_COLLECTIONS}),
    MergeRequestStatus.MERGED_COLLECTIONS: frozenset({MergeRequestStatus.IN_PROGRESS}),
    MergeRequestStatus.IN_PROGRESS: frozenset(
        {MergeRequestStatus.COMPLETED, MergeRequestStatus.FAILED}
    ),
    MergeRequestStatus.COMPLETED: frozenset(),
    MergeRequestStatus.FAILED: frozenset(),
}

_ORDER: Final[list[MergeRequestStatus]] = list(MergeRequestStatus)

# States in which selections and cached comparison data may still change.
LOCKED_STATES: Final[frozenset[MergeRequestStatus]] = frozenset(
    {MergeRequestStatus.IN_PROGRESS, MergeRequestStatus.COMPLETED, MergeRequestStatus.FAILED}
)


def can_transition(current: MergeRequestStatus, new: MergeRequestStatus) -> bool:
    return new in TRANSITIONS[current]


def ensure_transition(merge_request: MergeRequest, new: MergeRequestStatus) -> None:
    if not can_transition(merge_request.status, new):
        raise InvalidStateTransition(
            f"Merge request {merge_request.id} cannot move from {merge_request.status} to {new}",
            current=merge_request.status,
            requested=new,
        )


def ensure_mutable(merge_request: MergeRequest) -> None:
    if merge_request.status in LOCKED_STATES:
        raise InvalidStateTransition(
            f"Merge request {merge_request.id} is {merge_request.status} and can no longer change",
            current=merge_request.status,
        )


def reached(status: MergeRequestStatus, checkpoint: MergeRequestStatus) -> bool:
    """Whether ``status`` is at or beyond ``checkpoint`` in the wizard order."""

    return _ORDER.index(status) >= _ORDER.index(checkpoint)


def advance_to_at_least(merge_request: MergeRequest, checkpoint: MergeRequestStatus) -> bool:
    """Move forward to ``checkpoint`` when one step away; never moves backwards.

    Returns whether the status changed.
    """

    ensure_mutable(merge_request)
    if reached(merge_request.status, checkpoint):
        return False
    ensure_transition(merge_request, checkpoint)
    merge_request.status = checkpoint
    return True
