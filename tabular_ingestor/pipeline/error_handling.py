"""Error classification shared by the job runner and the HTTP layer."""

from __future__ import annotations

from dataclasses import dataclass

from ..exceptions import (
    AgentAuthenticationError,
    ClaimLostError,
    ConfigurationError,
    FileRejectedError,
    MalwareDetectedError,
    SourceNotFoundError,
    SourceUnavailableError,
    TabularIngestorError,
    TransientSourceError,
    UnstableFileError,
)


@dataclass(frozen=True, slots=True)
class ErrorClassification:
    classification: str
    retryable: bool
    http_status: int


def classify_error(exc: BaseException) -> ErrorClassification:
    """Return how an exception should be recorded and surfaced."""

    if isinstance(exc, MalwareDetectedError):
        return ErrorClassification("security", False, 400)
    if isinstance(exc, FileRejectedError):
        return ErrorClassification("input", False, 400)
    if isinstance(exc, AgentAuthenticationError):
        return ErrorClassification("authentication", False, 401)
    if isinstance(exc, SourceNotFoundError):
        return ErrorClassification("not_found", False, 404)
    if isinstance(exc, SourceUnavailableError):
        return ErrorClassification("input", False, 400)
    if isinstance(exc, TransientSourceError):
        return ErrorClassification("transient", True, 502)
    if isinstance(exc, UnstableFileError | ClaimLostError):
        return ErrorClassification("benign", True, 409)
    if isinstance(exc, ConfigurationError):
        return ErrorClassification("configuration", False, 500)
    if isinstance(exc, TabularIngestorError):
        return ErrorClassification("application", False, 500)
    return ErrorClassification("unexpected", False, 500)


def error_message(exc: BaseException) -> str:
    return str(exc) or exc.__class__.__name__
