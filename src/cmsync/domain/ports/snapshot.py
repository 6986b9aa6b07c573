"""Port for database-level snapshots of a target instance."""

from __future__ import annotations

from collections.abc import Callable
from typing import Protocol, runtime_checkable


@runtime_checkable
class SnapshotBackend(Protocol):
    """Copies, restores and drops point-in-time copies of the live tables."""

    def take(self, name: str) -> list[str]:
        """Copy every live table under ``name``; return the copied table names."""
        ...

    def restore(self, name: str) -> list[str]: ...

    def drop(self, name: str) -> None: ...


SnapshotBackendFactory = Callable[[str], SnapshotBackend]
