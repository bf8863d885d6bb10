"""Batched, atomic dataset writes and codec-aware reads."""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Sequence
from dataclasses import dataclass
from typing import Any

from sqlalchemy import delete, insert, select
from sqlalchemy.orm import Session

from ..models.base import session_scope
from ..models.datasets import FileColumn, FileRow, ImportedFile, QualityScore
from ..parsers.base import ParsedTable
from ..pipeline.quality import QualityReport
from ..utils.logging import setup_logger
from .codec import RowCodec

logger = setup_logger(__name__)

DEFAULT_BATCH_SIZE = 500


@dataclass(slots=True)
class DatasetCreate:
    """Value object describing the logical file a parsed table becomes."""

    name: str
    file_type: str
    project_id: int | None = None
    storage_path: str | None = None


def upsert_quality_score(session: Session, file_id: int, report: QualityReport) -> QualityScore:
    """Insert or replace the single quality record for ``file_id``."""

    values = {
        "score": report.score,
        "trust_level": report.trust_level.value,
        "missing_rate": report.missing_rate,
        "duplicate_rate": report.duplicate_rate,
        "invalid_rate": report.invalid_rate,
        "schema_inconsistency_rate": report.schema_inconsistency_rate,
        "total_rows": report.total_rows,
        "total_columns": report.total_columns,
    }
    record = session.scalars(select(QualityScore).where(QualityScore.file_id == file_id)).first()
    if record is None:
        record = QualityScore(file_id=file_id, **values)
        session.add(record)
    else:
        for key, value in values.items():
            setattr(record, key, value)
    session.flush()
    return record


class DatasetWriter:
    """Writes columns, rows and the quality score for one file in one transaction."""

    def __init__(self, codec: RowCodec, *, batch_size: int = DEFAULT_BATCH_SIZE) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be positive")
        self.codec = codec
        self.batch_size = batch_size

    def _row_batches(
        self, file_id: int, rows: Sequence[dict[str, Any]]
    ) -> Iterator[list[dict[str, Any]]]:
        batch: list[dict[str, Any]] = []
        for index, row in enumerate(rows):
            batch.append({"file_id": file_id, "row_index": index, "data": self.codec.encode(row)})
            if len(batch) >= self.batch_size:
                yield batch
                batch = []
        if batch:
            yield batch

    def write_into(
        self,
        session: Session,
        dataset: DatasetCreate,
        table: ParsedTable,
        quality: QualityReport,
    ) -> ImportedFile:
        """Write within the caller's transaction; nothing is committed here."""

        imported = ImportedFile(
            project_id=dataset.project_id,
            name=dataset.name,
            file_type=dataset.file_type,
            storage_path=dataset.storage_path,
            row_count=table.row_count,
            encrypted=self.codec.encrypted,
        )
        session.add(imported)
        session.flush()

        session.add_all(
            FileColumn(file_id=imported.id, name=name, position=position)
            for position, name in enumerate(table.columns)
        )
        session.flush()

        for batch in self._row_batches(imported.id, table.rows):
            session.execute(insert(FileRow), batch)

        upsert_quality_score(session, imported.id, quality)
        return imported

    def write(self, dataset: DatasetCreate, table: ParsedTable, quality: QualityReport) -> int:
        """Persist the dataset atomically and return the imported file id."""

        with session_scope() as session:
            imported = self.write_into(session, dataset, table, quality)
            file_id = imported.id

        logger.info(
            "Imported %d rows into dataset %s",
            table.row_count,
            file_id,
            extra={"file_name": dataset.name, "status": "success"},
        )
        return file_id


class DatasetReader:
    """Reads dataset rows back through the same codec used to write them."""

    def __init__(self, codec: RowCodec) -> None:
        self.codec = codec

    def columns(self, session: Session, file_id: int) -> list[str]:
        return list(
            session.scalars(
                select(FileColumn.name)
                .where(FileColumn.file_id == file_id)
                .order_by(FileColumn.position)
            )
        )

    def _payloads(
        self,
        session: Session,
        file_id: int,
        *,
        offset: int = 0,
        limit: int | None = None,
    ) -> Iterator[bytes]:
        statement = (
            select(FileRow.data)
            .where(FileRow.file_id == file_id)
            .order_by(FileRow.row_index)
            .offset(offset)
        )
        if limit is not None:
            statement = statement.limit(limit)
        yield from session.scalars(statement)

    def raw_rows(self, session: Session, file_id: int, **window: Any) -> list[bytes]:
        """Plaintext JSON payloads, byte-for-byte as serialized at write time."""

        payloads = self._payloads(session, file_id, **window)
        return [self.codec.decode_bytes(payload) for payload in payloads]

    def rows(self, session: Session, file_id: int, **window: Any) -> list[dict[str, Any]]:
        payloads = self._payloads(session, file_id, **window)
        return [self.codec.decode(payload) for payload in payloads]


def purge_datasets(session: Session, file_ids: Iterable[int]) -> int:
    """Delete imported files and every dependent row; returns the number of files removed."""

    ids = sorted({int(file_id) for file_id in file_ids if file_id})
    if not ids:
        return 0

    session.execute(delete(FileRow).where(FileRow.file_id.in_(ids)))
    session.execute(delete(FileColumn).where(FileColumn.file_id.in_(ids)))
    session.execute(delete(QualityScore).where(QualityScore.file_id.in_(ids)))
    result = session.execute(delete(ImportedFile).where(ImportedFile.id.in_(ids)))
    return int(result.rowcount or 0)


def reencode_rows(
    session: Session, codec: RowCodec, *, batch_size: int = DEFAULT_BATCH_SIZE
) -> int:
    """Re-encode rows not yet stored in ``codec``'s form; returns rows rewritten."""

    rewritten = 0
    last_id = 0
    while True:
        batch = session.execute(
            select(FileRow.id, FileRow.data)
            .where(FileRow.id > last_id)
            .order_by(FileRow.id)
            .limit(batch_size)
        ).all()
        if not batch:
            break
        for row_id, payload in batch:
            last_id = row_id
            if codec.is_encoded(payload):
                continue
            session.get(FileRow, row_id).data = codec.encode_bytes(bytes(payload))
            rewritten += 1
        session.flush()

    if rewritten:
        session.execute(
            ImportedFile.__table__.update().values(encrypted=codec.encrypted)
        )
    return rewritten
