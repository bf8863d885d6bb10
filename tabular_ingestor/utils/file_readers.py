"""Streaming file readers, content checksums and at-rest detection."""

from __future__ import annotations

import hashlib
import logging
import os
import shutil
from collections.abc import Iterator
from datetime import datetime, timezone
from pathlib import Path

from ..exceptions import FileTooLargeError, InvalidFileError

DEFAULT_CHUNK_SIZE = 1024 * 1024

logger = logging.getLogger(__name__)


def stream_binary_file(
    file_path: str | Path,
    *,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    max_bytes: int | None = None,
) -> Iterator[bytes]:
    """Yield binary chunks from disk, respecting the max_bytes guardrail."""

    bytes_read = 0
    try:
        with open(file_path, "rb") as file_handle:
            while True:
                chunk = file_handle.read(chunk_size)
                if not chunk:
                    break
                bytes_read += len(chunk)
                if max_bytes is not None and bytes_read > max_bytes:
                    raise FileTooLargeError(max(max_bytes // (1024 * 1024), 1))
                yield chunk
    except OSError as exc:
        raise InvalidFileError(f"Failed to read file: {exc}") from exc


def compute_sha256(file_path: str | Path, *, chunk_size: int = DEFAULT_CHUNK_SIZE) -> str:
    """Return the hex sha256 of a file, read in constant memory."""

    digest = hashlib.sha256()
    for chunk in stream_binary_file(file_path, chunk_size=chunk_size):
        digest.update(chunk)
    return digest.hexdigest()


def sha256_text(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def modified_time(stat_result: os.stat_result) -> datetime:
    return datetime.fromtimestamp(stat_result.st_mtime, tz=timezone.utc)


def is_stable(
    modified_at: datetime,
    *,
    stable_seconds: int,
    now: datetime | None = None,
) -> bool:
    """Return True once a file has been left untouched for the quiescence window."""

    current = now or datetime.now(timezone.utc)
    if modified_at.tzinfo is None:
        modified_at = modified_at.replace(tzinfo=timezone.utc)
    return (current - modified_at).total_seconds() >= stable_seconds


def copy_to_staging(source: str | Path, staging_dir: Path, staged_name: str) -> Path:
    """Copy a file into the staging directory, returning the staged path."""

    staging_dir.mkdir(parents=True, exist_ok=True)
    destination = staging_dir / staged_name
    shutil.copyfile(source, destination)
    return destination


def remove_quietly(path: str | Path | None) -> None:
    """Delete a staged file if it still exists."""

    if not path:
        return
    try:
        Path(path).unlink(missing_ok=True)
    except OSError as exc:
        logger.debug("Failed to remove staged file %s: %s", path, exc)
