"""Tests for atomic dataset writes, codec-aware reads and re-encryption."""

from __future__ import annotations

from typing import Any

import pytest
from sqlalchemy import func, select

from tabular_ingestor.models.base import session_scope
from tabular_ingestor.models.datasets import FileColumn, FileRow, ImportedFile, QualityScore
from tabular_ingestor.parsers.base import ParsedTable
from tabular_ingestor.pipeline.quality import compute_quality
from tabular_ingestor.storage.codec import FernetRowCodec, PlainRowCodec
from tabular_ingestor.storage.writer import (
    DatasetCreate,
    DatasetReader,
    DatasetWriter,
    purge_datasets,
    reencode_rows,
    upsert_quality_score,
)


def _table(row_count: int = 5) -> ParsedTable:
    rows = [{"id": str(index), "label": f"row-{index}"} for index in range(row_count)]
    return ParsedTable(columns=["id", "label"], rows=rows, file_type="csv")


def _write(writer: DatasetWriter, table: ParsedTable, name: str = "rows.csv") -> int:
    return writer.write(
        DatasetCreate(name=name, file_type="csv", project_id=7, storage_path=f"/in/{name}"),
        table,
        compute_quality(table.columns, table.rows),
    )


class _FailingCodec(PlainRowCodec):
    """Blows up on a given row to simulate a mid-write failure."""

    def __init__(self, fail_on: int) -> None:
        self.fail_on = fail_on
        self.calls = 0

    def encode(self, row: dict[str, Any]) -> bytes:
        self.calls += 1
        if self.calls == self.fail_on:
            raise RuntimeError("disk full")
        return super().encode(row)


class TestDatasetWriter:
    def test_writes_columns_rows_and_quality(self) -> None:
        table = _table(5)
        file_id = _write(DatasetWriter(PlainRowCodec(), batch_size=2), table)

        reader = DatasetReader(PlainRowCodec())
        with session_scope() as session:
            imported = session.get(ImportedFile, file_id)
            assert imported is not None
            assert imported.row_count == 5
            assert imported.project_id == 7
            assert imported.encrypted is False
            assert imported.quality is not None
            assert imported.quality.total_rows == 5
            assert reader.columns(session, file_id) == ["id", "label"]
            assert reader.rows(session, file_id) == table.rows
            assert reader.rows(session, file_id, offset=3, limit=1) == [table.rows[3]]

    def test_failure_leaves_nothing_behind(self) -> None:
        writer = DatasetWriter(_FailingCodec(fail_on=4), batch_size=2)

        with pytest.raises(RuntimeError, match="disk full"):
            _write(writer, _table(5))

        with session_scope() as session:
            assert session.scalar(select(func.count(ImportedFile.id))) == 0
            assert session.scalar(select(func.count(FileColumn.id))) == 0
            assert session.scalar(select(func.count(FileRow.id))) == 0
            assert session.scalar(select(func.count(QualityScore.id))) == 0

    def test_rejects_non_positive_batch_size(self) -> None:
        with pytest.raises(ValueError):
            DatasetWriter(PlainRowCodec(), batch_size=0)

    def test_encrypted_rows_are_readable_only_through_the_codec(self) -> None:
        codec = FernetRowCodec("server-secret")
        table = _table(3)
        file_id = _write(DatasetWriter(codec), table)

        with session_scope() as session:
            stored = list(session.scalars(select(FileRow.data).where(FileRow.file_id == file_id)))
            assert all(b"label" not in payload for payload in stored)
            assert session.get(ImportedFile, file_id).encrypted is True
            assert DatasetReader(codec).rows(session, file_id) == table.rows

    def test_raw_rows_are_byte_identical_across_codecs(self) -> None:
        table = _table(2)
        plain_id = _write(DatasetWriter(PlainRowCodec()), table, "plain.csv")
        codec = FernetRowCodec("server-secret")
        encrypted_id = _write(DatasetWriter(codec), table, "sealed.csv")

        with session_scope() as session:
            plain = DatasetReader(PlainRowCodec()).raw_rows(session, plain_id)
            sealed = DatasetReader(codec).raw_rows(session, encrypted_id)

        assert plain == sealed


def test_upsert_quality_score_replaces_existing_record() -> None:
    table = _table(2)
    file_id = _write(DatasetWriter(PlainRowCodec()), table)
    worse = compute_quality(table.columns, [*table.rows, table.rows[0]])

    with session_scope() as session:
        upsert_quality_score(session, file_id, worse)

    with session_scope() as session:
        records = list(session.scalars(select(QualityScore).where(QualityScore.file_id == file_id)))
        assert len(records) == 1
        assert records[0].duplicate_rate == pytest.approx(1 / 3)


def test_purge_datasets_removes_dependents() -> None:
    kept = _write(DatasetWriter(PlainRowCodec()), _table(2), "kept.csv")
    purged = _write(DatasetWriter(PlainRowCodec()), _table(3), "purged.csv")

    with session_scope() as session:
        assert purge_datasets(session, [purged, None, purged]) == 1
        assert purge_datasets(session, []) == 0

    with session_scope() as session:
        assert session.get(ImportedFile, purged) is None
        assert session.get(ImportedFile, kept) is not None
        remaining = session.scalars(select(FileRow.file_id).distinct()).all()
        assert remaining == [kept]


def test_reencode_rows_encrypts_plain_rows_once() -> None:
    table = _table(4)
    file_id = _write(DatasetWriter(PlainRowCodec()), table)
    codec = FernetRowCodec("server-secret")

    with session_scope() as session:
        assert reencode_rows(session, codec, batch_size=3) == 4

    with session_scope() as session:
        assert reencode_rows(session, codec) == 0
        assert session.get(ImportedFile, file_id).encrypted is True
        assert DatasetReader(codec).rows(session, file_id) == table.rows
