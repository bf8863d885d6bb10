"""Imported datasets: logical files, their columns, encoded rows and quality scores."""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import (
    DateTime,
    Float,
    ForeignKey,
    Integer,
    LargeBinary,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base


class ImportedFile(Base):
    """A dataset produced by one successful ingestion job."""

    __tablename__ = "imported_files"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    project_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    file_type: Mapped[str] = mapped_column(String(16), nullable=False)
    storage_path: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    row_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    encrypted: Mapped[bool] = mapped_column(default=False, nullable=False)
    uploaded_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    columns: Mapped[list[FileColumn]] = relationship(
        back_populates="file",
        cascade="all, delete-orphan",
        order_by="FileColumn.position",
        passive_deletes=True,
    )
    quality: Mapped[QualityScore | None] = relationship(
        back_populates="file",
        cascade="all, delete-orphan",
        uselist=False,
        passive_deletes=True,
    )

    def __repr__(self) -> str:
        return f"<ImportedFile id={self.id} name={self.name!r} rows={self.row_count}>"


class FileColumn(Base):
    __tablename__ = "file_columns"
    __table_args__ = (UniqueConstraint("file_id", "position", name="uq_file_columns_position"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    file_id: Mapped[int] = mapped_column(
        ForeignKey("imported_files.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False)

    file: Mapped[ImportedFile] = relationship(back_populates="columns")


class FileRow(Base):
    """One row payload; ``data`` is produced by the configured row codec."""

    __tablename__ = "file_rows"
    __table_args__ = (UniqueConstraint("file_id", "row_index", name="uq_file_rows_index"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    file_id: Mapped[int] = mapped_column(
        ForeignKey("imported_files.id", ondelete="CASCADE"), nullable=False, index=True
    )
    row_index: Mapped[int] = mapped_column(Integer, nullable=False)
    data: Mapped[bytes] = mapped_column(LargeBinary, nullable=False)


class QualityScore(Base):
    __tablename__ = "data_quality_scores"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    file_id: Mapped[int] = mapped_column(
        ForeignKey("imported_files.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    score: Mapped[float] = mapped_column(Float, nullable=False)
    trust_level: Mapped[str] = mapped_column(String(16), nullable=False)
    missing_rate: Mapped[float] = mapped_column(Float, nullable=False)
    duplicate_rate: Mapped[float] = mapped_column(Float, nullable=False)
    invalid_rate: Mapped[float] = mapped_column(Float, nullable=False)
    schema_inconsistency_rate: Mapped[float] = mapped_column(Float, nullable=False)
    total_rows: Mapped[int] = mapped_column(Integer, nullable=False)
    total_columns: Mapped[int] = mapped_column(Integer, nullable=False)
    computed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    file: Mapped[ImportedFile] = relationship(back_populates="quality")
