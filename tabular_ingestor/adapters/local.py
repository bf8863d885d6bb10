"""Local filesystem connector: breadth-first directory walks with a file budget."""

from __future__ import annotations

import os
import time
from collections import deque
from collections.abc import Iterator
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from ..exceptions import (
    DirectoryUnreadableError,
    FileRejectedError,
    SourceUnavailableError,
    UnstableFileError,
)
from ..models.sources import SourceKind
from ..monitoring.metrics import observe_scan_duration, record_file_discovered
from ..pipeline.dedup import DiscoveredFile
from ..pipeline.queue import ClaimedJob
from ..schemas.ingestion import ConnectionCheck, ScanSummary
from ..utils.file_readers import compute_sha256, copy_to_staging, is_stable, modified_time
from ..utils.patterns import (
    file_extension,
    matches_pattern,
    normalize_extensions,
    normalize_list,
    sanitize_file_name,
)
from .base import SourceConnector

MISSING_PATH_ERROR = "Missing connection_config.path"


class LocalSourceConfig(BaseModel):
    """Normalized ``connection_config`` of a local source."""

    model_config = ConfigDict(extra="ignore")

    directories: list[str] = Field(default_factory=list)
    recursive: bool = True
    max_depth: int = Field(default=6, ge=0)
    max_files: int = Field(default=5000, ge=1)
    allowed_extensions: list[str] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _from_connection_config(cls, raw: Any) -> Any:
        if not isinstance(raw, dict):
            return {}
        if "directories" in raw:
            return raw

        directories: list[str] = []
        for item in [*normalize_list(raw.get("path")), *normalize_list(raw.get("paths"))]:
            if item not in directories:
                directories.append(item)

        normalized: dict[str, Any] = {
            "directories": directories,
            "recursive": raw.get("recursive") is not False,
            "allowed_extensions": normalize_list(
                raw.get("extensions") or raw.get("allowedExtensions")
            ),
        }
        for key, target in (("maxDepth", "max_depth"), ("maxFiles", "max_files")):
            value = raw.get(key)
            try:
                if value is not None and int(value) > 0:
                    normalized[target] = int(value)
            except (TypeError, ValueError):
                continue
        return normalized


@dataclass(slots=True)
class WalkResult:
    files: list[Path] = field(default_factory=list)
    errors: list[DirectoryUnreadableError] = field(default_factory=list)


def walk_directory(root: Path, *, recursive: bool, max_depth: int, max_files: int) -> WalkResult:
    """Breadth-first listing of regular files under ``root``.

    Unreadable directories are reported in ``errors`` and skipped; the walk
    stops once ``max_files`` files were collected.
    """

    result = WalkResult()
    pending: deque[tuple[Path, int]] = deque([(root, 0)])
    while pending and len(result.files) < max_files:
        directory, depth = pending.popleft()
        try:
            entries = sorted(os.scandir(directory), key=lambda item: item.name)
        except OSError as exc:
            result.errors.append(DirectoryUnreadableError(f"{directory}: {exc.strerror or exc}"))
            continue

        for entry in entries:
            try:
                if entry.is_file():
                    result.files.append(Path(entry.path))
                    if len(result.files) >= max_files:
                        break
                elif entry.is_dir() and recursive and depth < max_depth:
                    pending.append((Path(entry.path), depth + 1))
            except OSError as exc:
                result.errors.append(
                    DirectoryUnreadableError(f"{entry.path}: {exc.strerror or exc}")
                )
    return result


class LocalConnector(SourceConnector):
    """Scans configured directories and copies queued files into staging at processing time."""

    kind = SourceKind.LOCAL

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        defaults = self.settings.ingestion
        config = LocalSourceConfig.model_validate(
            {
                "maxDepth": defaults.default_max_depth,
                "maxFiles": defaults.default_max_files,
                **(self.source.connection_config or {}),
            }
        )
        config.allowed_extensions = normalize_extensions(
            config.allowed_extensions, defaults.allowed_extensions
        )
        self.config = config

    async def scan(self, *, retry_failed: bool = False) -> ScanSummary:
        started = time.perf_counter()
        try:
            return await self._run_in_thread(self._scan, retry_failed)
        finally:
            observe_scan_duration(self.kind.value, time.perf_counter() - started)

    async def check_connection(self) -> ConnectionCheck:
        if not self.config.directories:
            raise SourceUnavailableError(MISSING_PATH_ERROR)
        problems = await self._run_in_thread(self._unreadable_directories)
        return self.connection_result(" | ".join(problems) or None)

    def _unreadable_directories(self) -> list[str]:
        problems: list[str] = []
        for directory in self.config.directories:
            path = Path(directory).expanduser()
            if not path.is_dir():
                problems.append(f"{path}: not an accessible directory")
            elif not os.access(path, os.R_OK | os.X_OK):
                problems.append(f"{path}: permission denied")
        return problems

    def _candidates(self, summary: ScanSummary) -> Iterator[Path]:
        remaining = self.config.max_files
        for directory in self.config.directories:
            if remaining <= 0:
                break
            walk = walk_directory(
                Path(directory).expanduser(),
                recursive=self.config.recursive,
                max_depth=self.config.max_depth,
                max_files=remaining,
            )
            for error in walk.errors:
                self.logger.warning("Skipping unreadable path: %s", error)
                summary.errors.append(str(error))
            remaining -= len(walk.files)
            yield from walk.files

    def _fingerprint_stable(self, path: Path) -> tuple[os.stat_result, str]:
        """Stat and hash ``path``, raising :class:`UnstableFileError` while it is still changing."""

        stat_result = path.stat()
        modified_at = modified_time(stat_result)
        stable_seconds = self.settings.ingestion.stable_seconds
        if not is_stable(modified_at, stable_seconds=stable_seconds, now=self.context.clock()):
            raise UnstableFileError(f"{path.name} was modified less than {stable_seconds}s ago")

        checksum = compute_sha256(path, chunk_size=self.settings.ingestion.checksum_chunk_bytes)
        after = path.stat()
        if (after.st_size, after.st_mtime_ns) != (stat_result.st_size, stat_result.st_mtime_ns):
            raise UnstableFileError(f"{path.name} changed while it was being hashed")
        return stat_result, checksum

    def _scan(self, retry_failed: bool) -> ScanSummary:
        summary = ScanSummary(source_id=self.source.id)
        if not self.config.directories:
            summary.errors.append(MISSING_PATH_ERROR)
            return self.finish_scan(summary)

        pattern = self.source.file_pattern or "*"
        for path in self._candidates(summary):
            if not matches_pattern(path.name, pattern):
                summary.skipped += 1
                continue
            if file_extension(path.name) not in self.config.allowed_extensions:
                summary.skipped += 1
                continue

            try:
                stat_result, checksum = self._fingerprint_stable(path)
            except UnstableFileError as exc:
                self.logger.debug("Deferring file: %s", exc)
                record_file_discovered(self.kind.value, "unstable")
                summary.skipped += 1
                continue
            except FileRejectedError as exc:
                summary.errors.append(f"{path}: {exc}")
                summary.skipped += 1
                continue
            except OSError:
                summary.skipped += 1
                continue

            registration = self.register_and_enqueue(
                DiscoveredFile(
                    source_id=self.source.id,
                    remote_path=str(path),
                    original_path=str(path),
                    file_name=path.name,
                    checksum=checksum,
                    file_size=stat_result.st_size,
                    last_modified=modified_time(stat_result),
                ),
                retry_failed=retry_failed,
            )
            if not registration.created:
                summary.skipped += 1
                continue
            if registration.updated:
                summary.updated += 1
            summary.discovered += 1
            summary.queued += 1

        self.logger.info(
            "Local scan finished: %d queued, %d skipped",
            summary.queued,
            summary.skipped,
            extra={"status": "error" if summary.errors else "ok"},
        )
        return self.finish_scan(summary)

    async def stage(self, job: ClaimedJob) -> Path:
        if not job.remote_path:
            return await super().stage(job)
        staged_name = sanitize_file_name(
            f"local-{self.source.id}-{job.file_id}-{job.file_name or Path(job.remote_path).name}"
        )
        return await self._run_in_thread(
            copy_to_staging, job.remote_path, self.staging_dir, staged_name
        )
