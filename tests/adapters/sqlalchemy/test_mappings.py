from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import create_engine, inspect

from cmsync.adapters.sqlalchemy import mapper_registry, start_mappers
from cmsync.adapters.sqlalchemy.migrations import upgrade_head

if TYPE_CHECKING:
    from pathlib import Path

    from sqlalchemy.engine import Engine

BOOKKEEPING_TABLES = {
    "document_mapping",
    "file_fingerprint_cache",
    "merge_request",
    "merge_request_data",
    "merge_request_selection",
    "merge_request_snapshot",
    "snapshot_activity",
    "snapshot_mapping_row",
    "sync_exclusion",
}


def test_upgrade_head_creates_every_mapped_table(sqlite_engine: Engine) -> None:
    tables = set(inspect(sqlite_engine).get_table_names())

    assert tables >= BOOKKEEPING_TABLES
    assert "alembic_version" in tables
    assert set(mapper_registry.metadata.tables) == BOOKKEEPING_TABLES


def test_migration_columns_match_mapped_metadata(sqlite_engine: Engine) -> None:
    inspector = inspect(sqlite_engine)

    for name, table in mapper_registry.metadata.tables.items():
        migrated = {column["name"] for column in inspector.get_columns(name)}
        assert migrated == set(table.columns.keys()), name


def test_unique_constraints_follow_naming_convention(sqlite_engine: Engine) -> None:
    constraints = inspect(sqlite_engine).get_unique_constraints("document_mapping")

    assert [constraint["name"] for constraint in constraints] == [
        "uq_document_mapping_source_instance"
    ]


def test_upgrade_head_is_repeatable_on_a_database_file(tmp_path: Path) -> None:
    database_uri = f"sqlite+pysqlite:///{tmp_path / 'bookkeeping.db'}"
    start_mappers()

    upgrade_head(database_uri=database_uri)
    upgrade_head(database_uri=database_uri)

    engine = create_engine(database_uri, future=True)
    try:
        assert set(inspect(engine).get_table_names()) >= BOOKKEEPING_TABLES
    finally:
        engine.dispose()
