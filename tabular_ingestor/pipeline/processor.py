"""Parse, validate, score and persist one staged file."""

from __future__ import annotations

import time
from dataclasses import dataclass
from pathlib import Path

from ..monitoring.metrics import (
    observe_processing_duration,
    observe_quality_score,
    record_rows_imported,
)
from ..parsers import get_parser
from ..storage.codec import RowCodec, build_row_codec
from ..storage.writer import DatasetCreate, DatasetWriter
from ..utils.config import GlobalSettings, get_settings
from ..utils.logging import setup_logger
from ..utils.malware import scan_file
from ..utils.patterns import file_extension
from .alerts import AlertNotifier, DatabaseAlertNotifier, quality_alert
from .quality import QualityReport, compute_quality
from .templates import evaluate_template, parse_template_rule

logger = setup_logger(__name__)


@dataclass(frozen=True, slots=True)
class ImportResult:
    imported_file_id: int
    rows_imported: int
    quality: QualityReport


class FileProcessor:
    """The parser -> template -> scorer -> writer chain.

    Raises a :class:`~tabular_ingestor.exceptions.FileRejectedError` subclass for
    any permanent problem with the file; nothing is written in that case.
    """

    def __init__(
        self,
        settings: GlobalSettings | None = None,
        *,
        codec: RowCodec | None = None,
        writer: DatasetWriter | None = None,
        alerts: AlertNotifier | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.codec = codec or build_row_codec(self.settings)
        self.writer = writer or DatasetWriter(
            self.codec, batch_size=self.settings.ingestion.write_batch_size
        )
        self.alerts = alerts or DatabaseAlertNotifier()

    def process(
        self,
        *,
        path: str | Path,
        file_name: str,
        project_id: int | None,
        storage_path: str | None,
        template_rule: str | None = None,
        source_id: int | None = None,
        source_kind: str = "-",
    ) -> ImportResult:
        started = time.perf_counter()

        scan_file(path, self.settings.malware_scan)

        parser = get_parser(file_name, self.settings.uploads)
        table = parser.parse(path)

        verdict = evaluate_template(parse_template_rule(template_rule), file_name, table.columns)
        verdict.raise_for_failure()

        report = compute_quality(table.columns, table.rows)

        imported_file_id = self.writer.write(
            DatasetCreate(
                name=file_name,
                file_type=file_extension(file_name).lstrip(".") or table.file_type,
                project_id=project_id,
                storage_path=storage_path,
            ),
            table,
            report,
        )

        observe_processing_duration(time.perf_counter() - started)
        observe_quality_score(report.score)
        record_rows_imported(source_kind, table.row_count)

        alert = quality_alert(
            report,
            imported_file_id=imported_file_id,
            file_name=file_name,
            project_id=project_id,
            source_id=source_id,
        )
        if alert is not None:
            self.alerts.notify(alert)

        logger.debug(
            "Scored %s at %.1f (%s)",
            file_name,
            report.score,
            report.trust_level.value,
            extra={"source_id": source_id or "-", "file_name": file_name},
        )
        return ImportResult(
            imported_file_id=imported_file_id,
            rows_imported=table.row_count,
            quality=report,
        )
