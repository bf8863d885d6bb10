"""Create sources, discovery history, jobs, datasets and alerts."""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op as alembic_op  # type: ignore[import-untyped]

revision = "20261019_0001"
down_revision = None
branch_labels = None
depends_on = None


def _timestamp(name: str, *, nullable: bool = True) -> sa.Column:
    if nullable:
        return sa.Column(name, sa.DateTime(timezone=True), nullable=True)
    return sa.Column(name, sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now())


def upgrade() -> None:
    alembic_op.create_table(
        "ingestion_sources",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("kind", sa.String(length=32), nullable=False),
        sa.Column("project_id", sa.Integer(), nullable=True),
        sa.Column("connection_config", sa.JSON(), nullable=True),
        sa.Column("file_pattern", sa.String(length=255), nullable=True),
        sa.Column("template_rule", sa.Text(), nullable=True),
        sa.Column("poll_interval_minutes", sa.Integer(), nullable=False, server_default="5"),
        sa.Column("enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("agent_key_hash", sa.String(length=64), nullable=True),
        sa.Column("agent_key_hint", sa.String(length=16), nullable=True),
        _timestamp("last_agent_seen_at"),
        _timestamp("last_scan_at"),
        sa.Column("last_error", sa.Text(), nullable=True),
        _timestamp("created_at", nullable=False),
    )
    alembic_op.create_index("ix_ingestion_sources_kind", "ingestion_sources", ["kind"])
    alembic_op.create_index("ix_ingestion_sources_project_id", "ingestion_sources", ["project_id"])

    alembic_op.create_table(
        "ingestion_files",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "source_id",
            sa.Integer(),
            sa.ForeignKey("ingestion_sources.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("remote_path", sa.String(length=1024), nullable=False),
        sa.Column("original_path", sa.String(length=1024), nullable=True),
        sa.Column("file_name", sa.String(length=255), nullable=False),
        sa.Column("file_size", sa.BigInteger(), nullable=True),
        _timestamp("last_modified"),
        sa.Column("checksum_sha256", sa.String(length=64), nullable=True),
        sa.Column("staging_path", sa.String(length=1024), nullable=True),
        sa.Column("rows_imported", sa.Integer(), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="NEW"),
        sa.Column("error_message", sa.Text(), nullable=True),
        _timestamp("first_seen_at", nullable=False),
        _timestamp("processed_at"),
    )
    alembic_op.create_index(
        "ix_ingestion_files_source_path", "ingestion_files", ["source_id", "remote_path", "id"]
    )
    alembic_op.create_index(
        "ix_ingestion_files_source_checksum", "ingestion_files", ["source_id", "checksum_sha256"]
    )

    alembic_op.create_table(
        "ingestion_jobs",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "source_id",
            sa.Integer(),
            sa.ForeignKey("ingestion_sources.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "file_id",
            sa.Integer(),
            sa.ForeignKey("ingestion_files.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("file_name", sa.String(length=255), nullable=True),
        sa.Column("file_hash", sa.String(length=64), nullable=True),
        sa.Column("imported_file_id", sa.Integer(), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="PENDING"),
        sa.Column("rows_imported", sa.Integer(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("attempt", sa.Integer(), nullable=False, server_default="1"),
        _timestamp("started_at"),
        _timestamp("finished_at"),
        _timestamp("created_at", nullable=False),
    )
    alembic_op.create_index("ix_ingestion_jobs_source_id", "ingestion_jobs", ["source_id"])
    alembic_op.create_index("ix_ingestion_jobs_file_id", "ingestion_jobs", ["file_id"])
    alembic_op.create_index(
        "ix_ingestion_jobs_imported_file_id", "ingestion_jobs", ["imported_file_id"]
    )
    alembic_op.create_index(
        "ix_ingestion_jobs_unclaimed", "ingestion_jobs", ["status", "started_at", "id"]
    )

    alembic_op.create_table(
        "imported_files",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("project_id", sa.Integer(), nullable=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("file_type", sa.String(length=16), nullable=False),
        sa.Column("storage_path", sa.String(length=1024), nullable=True),
        sa.Column("row_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("encrypted", sa.Boolean(), nullable=False, server_default=sa.false()),
        _timestamp("uploaded_at", nullable=False),
    )
    alembic_op.create_index("ix_imported_files_project_id", "imported_files", ["project_id"])

    alembic_op.create_table(
        "file_columns",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "file_id",
            sa.Integer(),
            sa.ForeignKey("imported_files.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.UniqueConstraint("file_id", "position", name="uq_file_columns_position"),
    )
    alembic_op.create_index("ix_file_columns_file_id", "file_columns", ["file_id"])

    alembic_op.create_table(
        "file_rows",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "file_id",
            sa.Integer(),
            sa.ForeignKey("imported_files.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("row_index", sa.Integer(), nullable=False),
        sa.Column("data", sa.LargeBinary(), nullable=False),
        sa.UniqueConstraint("file_id", "row_index", name="uq_file_rows_index"),
    )
    alembic_op.create_index("ix_file_rows_file_id", "file_rows", ["file_id"])

    alembic_op.create_table(
        "data_quality_scores",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "file_id",
            sa.Integer(),
            sa.ForeignKey("imported_files.id", ondelete="CASCADE"),
            nullable=False,
            unique=True,
        ),
        sa.Column("score", sa.Float(), nullable=False),
        sa.Column("trust_level", sa.String(length=16), nullable=False),
        sa.Column("missing_rate", sa.Float(), nullable=False),
        sa.Column("duplicate_rate", sa.Float(), nullable=False),
        sa.Column("invalid_rate", sa.Float(), nullable=False),
        sa.Column("schema_inconsistency_rate", sa.Float(), nullable=False),
        sa.Column("total_rows", sa.Integer(), nullable=False),
        sa.Column("total_columns", sa.Integer(), nullable=False),
        _timestamp("computed_at", nullable=False),
    )

    alembic_op.create_table(
        "alerts",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("fingerprint", sa.String(length=255), nullable=False, unique=True),
        sa.Column("alert_type", sa.String(length=64), nullable=False),
        sa.Column("severity", sa.String(length=16), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="open"),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("project_id", sa.Integer(), nullable=True),
        sa.Column("source_id", sa.Integer(), nullable=True),
        sa.Column("payload", sa.JSON(), nullable=True),
        sa.Column("occurrences", sa.Integer(), nullable=False, server_default="1"),
        _timestamp("first_seen_at", nullable=False),
        _timestamp("last_seen_at", nullable=False),
        _timestamp("resolved_at"),
    )
    alembic_op.create_index("ix_alerts_alert_type", "alerts", ["alert_type"])
    alembic_op.create_index("ix_alerts_project_id", "alerts", ["project_id"])
    alembic_op.create_index("ix_alerts_source_id", "alerts", ["source_id"])


def downgrade() -> None:
    for table in (
        "alerts",
        "data_quality_scores",
        "file_rows",
        "file_columns",
        "imported_files",
        "ingestion_jobs",
        "ingestion_files",
        "ingestion_sources",
    ):
        alembic_op.drop_table(table)
