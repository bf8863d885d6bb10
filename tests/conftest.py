"""Pytest configuration - no path manipulation, rely on proper package installation."""

from __future__ import annotations

import os
from collections.abc import Callable, Iterator
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import pytest

from tabular_ingestor.adapters.token_cache import get_default_token_cache
from tabular_ingestor.models.base import reset_engine, session_scope
from tabular_ingestor.models.repository import SourceCreate, SourceRepository
from tabular_ingestor.models.sources import SourceKind
from tabular_ingestor.utils.config import get_settings

CONFIG_DIR = Path(__file__).resolve().parents[1] / "config"


@pytest.fixture(autouse=True)
def _isolated_environment(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Iterator[None]:
    """Give every test its own SQLite database, staging directory and settings."""

    monkeypatch.setenv("TABULAR_DATABASE_URL", f"sqlite:///{tmp_path / 'ingestion.sqlite'}")
    monkeypatch.setenv("TABULAR_API_KEYS", '["test-key"]')
    monkeypatch.setenv("TABULAR_CONFIG_DIR", str(CONFIG_DIR))
    monkeypatch.setenv("TABULAR_MALWARE_SCAN__ENABLED", "false")
    monkeypatch.setenv("TABULAR_INGESTION__STAGING_DIR", str(tmp_path / "staging"))
    monkeypatch.delenv("TABULAR_DATA_ENCRYPTION_KEY", raising=False)
    monkeypatch.delenv("TABULAR_ENVIRONMENT", raising=False)

    reset_engine()
    get_settings(reload=True)
    get_default_token_cache().clear()
    yield
    reset_engine()
    get_settings(reload=True)
    get_default_token_cache().clear()


@pytest.fixture
def make_source() -> Callable[..., int]:
    """Return a factory that persists an ingestion source and returns its id."""

    def _factory(kind: SourceKind = SourceKind.LOCAL, **overrides: Any) -> int:
        data = SourceCreate(
            name=overrides.pop("name", f"{kind.value} source"),
            kind=kind,
            **overrides,
        )
        with session_scope() as session:
            return SourceRepository(session).create(data).id

    return _factory


@pytest.fixture
def push_source(make_source: Callable[..., int]) -> Callable[..., tuple[int, str]]:
    """Return a factory creating an agent push source with a freshly issued key."""

    def _factory(**overrides: Any) -> tuple[int, str]:
        source_id = make_source(SourceKind.AGENT_PUSH, **overrides)
        with session_scope() as session:
            key = SourceRepository(session).issue_agent_key(source_id)
        return source_id, key

    return _factory


@pytest.fixture
def write_file() -> Callable[..., Path]:
    """Return a helper that writes text to a path and can backdate its modification time."""

    def _write(path: Path, content: str, *, age_seconds: float | None = None) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
        if age_seconds is not None:
            stamp = (datetime.now(timezone.utc) - timedelta(seconds=age_seconds)).timestamp()
            os.utime(path, (stamp, stamp))
        return path

    return _write


@pytest.fixture
def sales_csv() -> str:
    """Small sales export used across parser, pipeline and API tests."""

    return "region,revenue,units\nnorth,100,4\nsouth,250,9\neast,75,2\n"
