"""Command-line malware scanning for staged files."""

from __future__ import annotations

import subprocess
from pathlib import Path

from ..exceptions import ConfigurationError, MalwareDetectedError
from .config import MalwareScanSettings
from .logging import setup_logger

logger = setup_logger(__name__)


def scan_file(path: str | Path, settings: MalwareScanSettings) -> bool:
    """Run the configured scanner against ``path``.

    Returns True when the file was scanned clean and False when scanning was
    skipped. Raises :class:`MalwareDetectedError` on a positive result.
    """

    if not settings.enabled:
        return False

    try:
        completed = subprocess.run(
            [settings.command, "--no-summary", str(path)],
            capture_output=True,
            text=True,
            timeout=settings.timeout_seconds,
            check=False,
        )
    except FileNotFoundError as exc:
        if settings.allow_missing:
            logger.warning("Malware scanner '%s' not installed; skipping scan", settings.command)
            return False
        raise ConfigurationError(f"Malware scanner '{settings.command}' is not installed") from exc
    except subprocess.TimeoutExpired as exc:
        raise ConfigurationError(
            f"Malware scan timed out after {settings.timeout_seconds:.0f}s"
        ) from exc

    if completed.returncode == 0:
        return True
    if completed.returncode == 1:
        logger.warning("Malware detected in %s: %s", Path(path).name, completed.stdout.strip())
        raise MalwareDetectedError("Malware detected")

    raise ConfigurationError(
        f"Malware scan failed (exit {completed.returncode}): {completed.stderr.strip()}"
    )
