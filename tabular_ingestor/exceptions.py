"""Custom exceptions for tabular_ingestor."""

from __future__ import annotations


class TabularIngestorError(Exception):
    """Base exception for all tabular_ingestor errors."""

    pass


class ConfigurationError(TabularIngestorError):
    """Raised when configuration is invalid or missing."""

    pass


class FileRejectedError(TabularIngestorError):
    """Permanent, caller-input class failure: the file will not be imported."""

    pass


class UnsupportedFormatError(FileRejectedError):
    """Raised when a file extension has no registered parser."""

    def __init__(self, extension: str) -> None:
        label = extension or "(none)"
        super().__init__(f"Unsupported file type '{label}'. Only CSV and Excel files are accepted.")
        self.extension = extension


class TooManyRowsError(FileRejectedError):
    """Raised when a parsed file exceeds the configured row ceiling."""

    def __init__(self, max_rows: int) -> None:
        super().__init__(f"Too many rows (max {max_rows}).")
        self.max_rows = max_rows


class TemplateMismatchError(FileRejectedError):
    """Raised when a file violates its source's template rule."""

    def __init__(self, message: str, *, missing_columns: list[str] | None = None) -> None:
        super().__init__(message)
        self.missing_columns = list(missing_columns or [])


class MalwareDetectedError(FileRejectedError):
    """Raised when the malware scanner flags a staged file."""

    pass


class FileTooLargeError(FileRejectedError):
    """Raised when an upload exceeds the configured byte limit."""

    def __init__(self, max_mb: int) -> None:
        super().__init__(f"File too large. Max {max_mb} MB.")
        self.max_mb = max_mb


class InvalidFileError(FileRejectedError):
    """Raised when a file cannot be parsed into a header and rows."""

    pass


class TransientSourceError(TabularIngestorError):
    """Per-item I/O failure; logged and retried on a later cycle."""

    pass


class DownloadFailedError(TransientSourceError):
    """Raised when a cloud drive download fails."""

    pass


class DirectoryUnreadableError(TransientSourceError):
    """Raised when a local directory cannot be listed."""

    pass


class DriveAuthenticationError(TransientSourceError):
    """Raised when the service-account token exchange fails."""

    pass


class UnstableFileError(TabularIngestorError):
    """File is still being written; it will be picked up on a later cycle."""

    pass


class ClaimLostError(TabularIngestorError):
    """Another worker already claimed the job."""

    def __init__(self, job_id: int) -> None:
        super().__init__(f"Ingestion job {job_id} was claimed by another worker")
        self.job_id = job_id


class SourceNotFoundError(TabularIngestorError):
    """Raised when an ingestion source id does not resolve."""

    def __init__(self, source_id: int) -> None:
        super().__init__("Ingestion source not found.")
        self.source_id = source_id


class SourceUnavailableError(TabularIngestorError):
    """Raised when a source is disabled or of the wrong kind for the request."""

    pass


class AgentAuthenticationError(TabularIngestorError):
    """Raised when an agent push carries a missing or invalid secret."""

    pass


class PushRejectedError(FileRejectedError):
    """An agent push was refused after bookkeeping rows were written."""

    def __init__(
        self,
        message: str,
        *,
        source_id: int,
        ingestion_file_id: int | None = None,
        ingestion_job_id: int | None = None,
        file_hash: str | None = None,
    ) -> None:
        super().__init__(message)
        self.source_id = source_id
        self.ingestion_file_id = ingestion_file_id
        self.ingestion_job_id = ingestion_job_id
        self.file_hash = file_hash
