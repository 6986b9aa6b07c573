"""Initial bookkeeping schema.

Revision ID: 0001
Revises:
Create Date: 2026-10-19
"""

from __future__ import annotations

from typing import Any

import sqlalchemy as sa
from alembic import op

revision = "0001"
down_revision = None
branch_labels = None
depends_on = None


def _timestamp(name: str, *, server_default: bool = True) -> sa.Column[Any]:
    return sa.Column(
        name,
        sa.DateTime(timezone=True),
        nullable=True,
        server_default=sa.func.now() if server_default else None,
    )


def _mapping_columns() -> list[sa.Column[Any]]:
    return [
        sa.Column("content_type", sa.String(), nullable=False),
        sa.Column("source_id", sa.Integer(), nullable=True),
        sa.Column("source_document_id", sa.String(), nullable=False),
        sa.Column("source_updated_at", sa.String(), nullable=True),
        sa.Column("source_hash", sa.String(), nullable=True),
        sa.Column("target_id", sa.Integer(), nullable=True),
        sa.Column("target_document_id", sa.String(), nullable=True),
        sa.Column("target_updated_at", sa.String(), nullable=True),
        sa.Column("target_hash", sa.String(), nullable=True),
        sa.Column("locale", sa.String(), nullable=True),
    ]


def upgrade() -> None:
    op.create_table(
        "merge_request",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("source_instance", sa.String(), nullable=False),
        sa.Column("target_instance", sa.String(), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.PrimaryKeyConstraint("id", name="pk_merge_request"),
    )
    op.create_index(
        "ix_merge_request_target_status", "merge_request", ["target_instance", "status"]
    )

    op.create_table(
        "merge_request_selection",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("merge_request_id", sa.Integer(), nullable=False),
        sa.Column("table_name", sa.String(), nullable=False),
        sa.Column("content_type", sa.String(), nullable=False),
        sa.Column("document_id", sa.String(), nullable=False),
        sa.Column("direction", sa.String(length=16), nullable=False),
        _timestamp("created_at"),
        sa.Column("sync_success", sa.Boolean(), nullable=True),
        sa.Column("sync_failure_response", sa.Text(), nullable=True),
        _timestamp("sync_date", server_default=False),
        sa.ForeignKeyConstraint(
            ["merge_request_id"],
            ["merge_request.id"],
            name="fk_merge_request_selection_merge_request_id_merge_request",
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id", name="pk_merge_request_selection"),
        sa.UniqueConstraint(
            "merge_request_id",
            "table_name",
            "document_id",
            "direction",
            name="uq_merge_request_selection_merge_request_id",
        ),
    )

    op.create_table(
        "merge_request_data",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("merge_request_id", sa.Integer(), nullable=False),
        sa.Column("kind", sa.String(length=16), nullable=False),
        sa.Column("payload", sa.Text(), nullable=False),
        _timestamp("updated_at"),
        sa.ForeignKeyConstraint(
            ["merge_request_id"],
            ["merge_request.id"],
            name="fk_merge_request_data_merge_request_id_merge_request",
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id", name="pk_merge_request_data"),
        sa.UniqueConstraint(
            "merge_request_id", "kind", name="uq_merge_request_data_merge_request_id"
        ),
    )

    op.create_table(
        "document_mapping",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("source_instance", sa.String(), nullable=False),
        sa.Column("target_instance", sa.String(), nullable=False),
        *_mapping_columns(),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.PrimaryKeyConstraint("id", name="pk_document_mapping"),
        sa.UniqueConstraint(
            "source_instance",
            "target_instance",
            "content_type",
            "source_document_id",
            name="uq_document_mapping_source_instance",
        ),
    )
    op.create_index(
        "ix_document_mapping_target",
        "document_mapping",
        ["source_instance", "target_instance", "content_type", "target_document_id"],
    )

    op.create_table(
        "sync_exclusion",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("source_instance", sa.String(), nullable=False),
        sa.Column("target_instance", sa.String(), nullable=False),
        sa.Column("content_type", sa.String(), nullable=False),
        sa.Column("document_id", sa.String(), nullable=False),
        sa.Column("field_path", sa.String(), nullable=True),
        _timestamp("created_at"),
        sa.PrimaryKeyConstraint("id", name="pk_sync_exclusion"),
    )
    op.create_index(
        "ix_sync_exclusion_pair", "sync_exclusion", ["source_instance", "target_instance"]
    )

    op.create_table(
        "file_fingerprint_cache",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("instance", sa.String(), nullable=False),
        sa.Column("document_id", sa.String(), nullable=False),
        sa.Column("updated_at", sa.String(), nullable=False),
        sa.Column("value", sa.String(), nullable=False),
        sa.Column("method", sa.String(length=32), nullable=False),
        sa.Column("size_bytes", sa.Integer(), nullable=True),
        _timestamp("created_at"),
        _timestamp("last_used_at", server_default=False),
        sa.PrimaryKeyConstraint("id", name="pk_file_fingerprint_cache"),
        sa.UniqueConstraint(
            "instance", "document_id", name="uq_file_fingerprint_cache_instance"
        ),
    )

    op.create_table(
        "merge_request_snapshot",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("merge_request_id", sa.Integer(), nullable=False),
        sa.Column("target_instance", sa.String(), nullable=False),
        sa.Column("schema_name", sa.String(), nullable=False),
        _timestamp("created_at"),
        sa.PrimaryKeyConstraint("id", name="pk_merge_request_snapshot"),
        sa.UniqueConstraint("schema_name", name="uq_merge_request_snapshot_schema_name"),
    )
    op.create_index(
        "ix_merge_request_snapshot_merge_request_id",
        "merge_request_snapshot",
        ["merge_request_id"],
    )
    op.create_index(
        "ix_merge_request_snapshot_target_instance",
        "merge_request_snapshot",
        ["target_instance"],
    )

    op.create_table(
        "snapshot_activity",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("merge_request_id", sa.Integer(), nullable=False),
        sa.Column("activity_type", sa.String(length=16), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("schema_name", sa.String(), nullable=True),
        sa.Column("message", sa.Text(), nullable=True),
        _timestamp("created_at"),
        sa.PrimaryKeyConstraint("id", name="pk_snapshot_activity"),
    )
    op.create_index(
        "ix_snapshot_activity_merge_request_id", "snapshot_activity", ["merge_request_id"]
    )

    op.create_table(
        "snapshot_mapping_row",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("snapshot_id", sa.Integer(), nullable=False),
        *_mapping_columns(),
        sa.ForeignKeyConstraint(
            ["snapshot_id"],
            ["merge_request_snapshot.id"],
            name="fk_snapshot_mapping_row_snapshot_id_merge_request_snapshot",
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id", name="pk_snapshot_mapping_row"),
    )
    op.create_index(
        "ix_snapshot_mapping_row_snapshot_id", "snapshot_mapping_row", ["snapshot_id"]
    )


def downgrade() -> None:
    op.drop_index("ix_snapshot_mapping_row_snapshot_id", table_name="snapshot_mapping_row")
    op.drop_table("snapshot_mapping_row")
    op.drop_index("ix_snapshot_activity_merge_request_id", table_name="snapshot_activity")
    op.drop_table("snapshot_activity")
    op.drop_index(
        "ix_merge_request_snapshot_target_instance", table_name="merge_request_snapshot"
    )
    op.drop_index(
        "ix_merge_request_snapshot_merge_request_id", table_name="merge_request_snapshot"
    )
    op.drop_table("merge_request_snapshot")
    op.drop_table("file_fingerprint_cache")
    op.drop_index("ix_sync_exclusion_pair", table_name="sync_exclusion")
    op.drop_table("sync_exclusion")
    op.drop_index("ix_document_mapping_target", table_name="document_mapping")
    op.drop_table("document_mapping")
    op.drop_table("merge_request_data")
    op.drop_table("merge_request_selection")
    op.drop_index("ix_merge_request_target_status", table_name="merge_request")
    op.drop_table("merge_request")
