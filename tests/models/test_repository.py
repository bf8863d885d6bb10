"""Tests for the ingestion source repository."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from tabular_ingestor.exceptions import SourceNotFoundError
from tabular_ingestor.models.base import session_scope
from tabular_ingestor.models.repository import SourceCreate, SourceRepository
from tabular_ingestor.models.sources import IngestionSource, SourceKind
from tabular_ingestor.utils.agent_keys import verify_agent_key


def test_create_and_get() -> None:
    with session_scope() as session:
        source = SourceRepository(session).create(
            SourceCreate(
                name="Finance share",
                kind=SourceKind.LOCAL,
                project_id=4,
                connection_config={"path": "/srv/finance"},
                file_pattern="*.csv",
            )
        )
        source_id = source.id

    with session_scope() as session:
        stored = SourceRepository(session).require(source_id)
        assert stored.kind == "local"
        assert stored.source_kind is SourceKind.LOCAL
        assert stored.connection_config == {"path": "/srv/finance"}
        assert stored.poll_interval_minutes == 5
        assert stored.enabled is True
        assert stored.created_at is not None


def test_require_unknown_source() -> None:
    with session_scope() as session:
        with pytest.raises(SourceNotFoundError):
            SourceRepository(session).require(42)


def test_list_enabled_orders_by_id(make_source) -> None:
    first = make_source(SourceKind.LOCAL)
    make_source(SourceKind.CLOUD_DRIVE, enabled=False)
    third = make_source(SourceKind.AGENT_PUSH)

    with session_scope() as session:
        ids = [source.id for source in SourceRepository(session).list_enabled()]

    assert ids == [first, third]


def test_issue_agent_key_replaces_previous(make_source) -> None:
    source_id = make_source(SourceKind.AGENT_PUSH)

    with session_scope() as session:
        old_key = SourceRepository(session).issue_agent_key(source_id)
    with session_scope() as session:
        new_key = SourceRepository(session).issue_agent_key(source_id)

    with session_scope() as session:
        source = session.get(IngestionSource, source_id)
        assert verify_agent_key(new_key, source.agent_key_hash)
        assert not verify_agent_key(old_key, source.agent_key_hash)
        assert source.agent_key_hint == f"...{new_key[-6:]}"
        assert new_key not in (source.agent_key_hash or "")


def test_mark_scanned_and_errors(make_source) -> None:
    source_id = make_source(SourceKind.AGENT_PUSH)
    scanned_at = datetime(2024, 3, 1, 9, 30, tzinfo=timezone.utc)

    with session_scope() as session:
        repository = SourceRepository(session)
        repository.mark_scanned(
            source_id, last_error="listing failed", scanned_at=scanned_at, agent_seen=True
        )

    with session_scope() as session:
        source = session.get(IngestionSource, source_id)
        assert source.last_error == "listing failed"
        assert source.last_scan_at.replace(tzinfo=timezone.utc) == scanned_at
        assert source.last_agent_seen_at.replace(tzinfo=timezone.utc) == scanned_at

    with session_scope() as session:
        SourceRepository(session).record_error(source_id, None)

    with session_scope() as session:
        assert session.get(IngestionSource, source_id).last_error is None
