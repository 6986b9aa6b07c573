"""Snapshot backends copying a target instance's live tables inside its own database.

Each operation opens an engine on the instance's ``DATABASE_URL`` and disposes it afterwards;
nothing is pooled between operations.
"""

from __future__ import annotations

import logging
import re
from contextlib import contextmanager
from typing import TYPE_CHECKING

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.engine import make_url
from sqlalchemy.exc import ArgumentError, SQLAlchemyError
from sqlalchemy.pool import NullPool

from cmsync.config import ConfigurationError, get_instance_config
from cmsync.domain.errors import SnapshotFailure

if TYPE_CHECKING:
    from collections.abc import Iterator

    from sqlalchemy.engine import Connection

    from cmsync.domain.ports import SnapshotBackend

log = logging.getLogger(__name__)

LIVE_SCHEMA = "public"
SNAPSHOT_PREFIX = "snapshot_mr_"
_SQLITE_SEPARATOR = "__"
_NAME_PATTERN = re.compile(r"^[a-z][a-z0-9_]*$")


def _checked_name(name: str) -> str:
    if not _NAME_PATTERN.match(name):
        raise SnapshotFailure(f"Invalid snapshot name: {name!r}")
    return name


class _ScopedEngineBackend:
    def __init__(self, database_url: str) -> None:
        self.database_url = database_url

    @contextmanager
    def _connection(self, action: str) -> Iterator[Connection]:
        engine = create_engine(self.database_url, poolclass=NullPool, future=True)
        try:
            with engine.begin() as connection:
                yield connection
        except SQLAlchemyError as exc:
            raise SnapshotFailure(f"Snapshot {action} failed: {exc}") from exc
        finally:
            engine.dispose()


class PostgresSnapshotBackend(_ScopedEngineBackend):
    """Copies the ``public`` schema into a schema named after the snapshot."""

    def take(self, name: str) -> list[str]:
        schema = _checked_name(name)
        with self._connection("take") as connection:
            quote = connection.dialect.identifier_preparer.quote
            tables = sorted(inspect(connection).get_table_names(schema=LIVE_SCHEMA))
            connection.execute(text(f"CREATE SCHEMA {quote(schema)}"))
            for table in tables:
                connection.execute(
                    text(
                        f"CREATE TABLE {quote(schema)}.{quote(table)} "
                        f"AS TABLE {quote(LIVE_SCHEMA)}.{quote(table)}"
                    )
                )
        log.info(f"Copied {len(tables)} table(s) into schema {schema}")
        return tables

    def restore(self, name: str) -> list[str]:
        schema = _checked_name(name)
        with self._connection("restore") as connection:
            inspector = inspect(connection)
            if schema not in inspector.get_schema_names():
                raise SnapshotFailure(f"Snapshot schema {schema} does not exist")
            quote = connection.dialect.identifier_preparer.quote
            live = set(inspector.get_table_names(schema=LIVE_SCHEMA))
            tables = sorted(live & set(inspector.get_table_names(schema=schema)))
            if not tables:
                return []

            # Triggers and foreign key checks are off for this transaction only.
            connection.execute(text("SET LOCAL session_replication_role = replica"))
            connection.execute(
                text(
                    "TRUNCATE TABLE "
                    + ", ".join(f"{quote(LIVE_SCHEMA)}.{quote(table)}" for table in tables)
                )
            )
            for table in tables:
                columns = _shared_columns(connection, table, LIVE_SCHEMA, table, schema)
                connection.execute(
                    text(
                        f"INSERT INTO {quote(LIVE_SCHEMA)}.{quote(table)} ({columns}) "
                        f"SELECT {columns} FROM {quote(schema)}.{quote(table)}"
                    )
                )
        log.warning(f"Restored {len(tables)} table(s) from schema {schema}")
        return tables

    def drop(self, name: str) -> None:
        schema = _checked_name(name)
        with self._connection("drop") as connection:
            quote = connection.dialect.identifier_preparer.quote
            connection.execute(text(f"DROP SCHEMA IF EXISTS {quote(schema)} CASCADE"))
        log.info(f"Dropped snapshot schema {schema}")


class SqliteSnapshotBackend(_ScopedEngineBackend):
    """Copies every live table to ``<snapshot>__<table>`` in the same database file."""

    def take(self, name: str) -> list[str]:
        prefix = _checked_name(name) + _SQLITE_SEPARATOR
        with self._connection("take") as connection:
            quote = connection.dialect.identifier_preparer.quote
            tables = _sqlite_live_tables(connection)
            for table in tables:
                connection.execute(
                    text(f"CREATE TABLE {quote(prefix + table)} AS SELECT * FROM {quote(table)}")
                )
        log.info(f"Copied {len(tables)} table(s) with prefix {prefix}")
        return tables

    def restore(self, name: str) -> list[str]:
        prefix = _checked_name(name) + _SQLITE_SEPARATOR
        with self._connection("restore") as connection:
            copies = {
                table.removeprefix(prefix)
                for table in inspect(connection).get_table_names()
                if table.startswith(prefix)
            }
            if not copies:
                raise SnapshotFailure(f"Snapshot {name} does not exist")
            quote = connection.dialect.identifier_preparer.quote
            tables = [table for table in _sqlite_live_tables(connection) if table in copies]

            # Must run before the first write opens the transaction.
            connection.exec_driver_sql("PRAGMA foreign_keys = OFF")
            for table in tables:
                columns = _shared_columns(connection, table, None, prefix + table, None)
                connection.execute(text(f"DELETE FROM {quote(table)}"))
                connection.execute(
                    text(
                        f"INSERT INTO {quote(table)} ({columns}) "
                        f"SELECT {columns} FROM {quote(prefix + table)}"
                    )
                )
        log.warning(f"Restored {len(tables)} table(s) from {name}")
        return tables

    def drop(self, name: str) -> None:
        prefix = _checked_name(name) + _SQLITE_SEPARATOR
        with self._connection("drop") as connection:
            quote = connection.dialect.identifier_preparer.quote
            for table in inspect(connection).get_table_names():
                if table.startswith(prefix):
                    connection.execute(text(f"DROP TABLE {quote(table)}"))
        log.info(f"Dropped snapshot tables of {name}")


def _sqlite_live_tables(connection: Connection) -> list[str]:
    return sorted(
        table
        for table in inspect(connection).get_table_names()
        if not table.startswith(SNAPSHOT_PREFIX) and not table.startswith("sqlite_")
    )


def _shared_columns(
    connection: Connection,
    live_table: str,
    live_schema: str | None,
    copy_table: str,
    copy_schema: str | None,
) -> str:
    inspector = inspect(connection)
    copied = {column["name"] for column in inspector.get_columns(copy_table, schema=copy_schema)}
    quote = connection.dialect.identifier_preparer.quote
    return ", ".join(
        quote(column["name"])
        for column in inspector.get_columns(live_table, schema=live_schema)
        if column["name"] in copied
    )


def snapshot_backend_for(instance_name: str) -> SnapshotBackend:
    """Return the snapshot backend for an instance's configured ``DATABASE_URL``."""

    try:
        database_url = get_instance_config(instance_name).database_url
    except ConfigurationError as exc:
        raise SnapshotFailure(str(exc)) from exc
    if not database_url:
        raise SnapshotFailure(f"Instance {instance_name} has no database configured")

    try:
        backend_name = make_url(database_url).get_backend_name()
    except ArgumentError as exc:
        raise SnapshotFailure(f"Invalid database url for {instance_name}") from exc
    if backend_name == "postgresql":
        return PostgresSnapshotBackend(database_url)
    if backend_name == "sqlite":
        return SqliteSnapshotBackend(database_url)
    raise SnapshotFailure(f"Snapshots are not supported on {backend_name} ({instance_name})")
