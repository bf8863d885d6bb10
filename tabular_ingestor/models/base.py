"""SQLAlchemy base declarations, engine lifecycle and session helpers."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from importlib import import_module
from typing import Any

from sqlalchemy import Engine, create_engine, event
from sqlalchemy.orm import DeclarativeBase, Session, close_all_sessions, sessionmaker

from ..utils.config import DatabasePoolSettings, get_settings

DEFAULT_DATABASE_URL = "sqlite:///./tabular_ingestor.db"

_MODEL_MODULES = (
    "tabular_ingestor.models.sources",
    "tabular_ingestor.models.ingestion",
    "tabular_ingestor.models.datasets",
    "tabular_ingestor.models.alerts",
)


class Base(DeclarativeBase):
    """Declarative base shared by sources, the ingestion ledger and imported datasets."""


_ENGINE: Engine | None = None
_SESSION_FACTORY: sessionmaker[Session] | None = None
_MODELS_IMPORTED = False


def _load_models() -> None:
    global _MODELS_IMPORTED
    if _MODELS_IMPORTED:
        return
    for module_name in _MODEL_MODULES:
        import_module(module_name)
    _MODELS_IMPORTED = True


def _is_sqlite(database_url: str) -> bool:
    return database_url.startswith("sqlite")


def _engine_options(database_url: str, pool: DatabasePoolSettings) -> dict[str, Any]:
    if _is_sqlite(database_url):
        # Concurrent claimers wait on the writer lock instead of failing fast.
        return {"connect_args": {"check_same_thread": False, "timeout": 30}}

    options: dict[str, Any] = {
        "connect_args": {},
        "pool_size": pool.pool_size,
        "max_overflow": pool.max_overflow,
        "pool_timeout": pool.timeout,
        "pool_pre_ping": pool.pre_ping,
    }
    if pool.recycle_seconds > 0:
        options["pool_recycle"] = pool.recycle_seconds
    return options


def _create_engine() -> Engine:
    """Build the engine for the configured database URL."""

    settings = get_settings()
    database_url = settings.database_url or DEFAULT_DATABASE_URL
    return create_engine(
        database_url,
        echo=False,
        future=True,
        **_engine_options(database_url, settings.database),
    )


def _enable_sqlite_wal(dbapi_connection: Any, _connection_record: Any) -> None:
    # WAL lets the API read datasets while a worker holds the write lock.
    cursor = dbapi_connection.cursor()
    try:
        cursor.execute("PRAGMA journal_mode=WAL")
    finally:
        cursor.close()


def get_engine() -> Engine:
    """Return the shared engine, creating it and the schema on first use."""

    global _ENGINE
    if _ENGINE is None:
        engine = _create_engine()
        if _is_sqlite(str(engine.url)) and engine.url.database not in (None, "", ":memory:"):
            event.listen(engine, "connect", _enable_sqlite_wal)
        _load_models()
        Base.metadata.create_all(bind=engine)
        _ENGINE = engine
    return _ENGINE


def get_session_factory() -> sessionmaker[Session]:
    global _SESSION_FACTORY
    if _SESSION_FACTORY is None:
        _SESSION_FACTORY = sessionmaker(
            bind=get_engine(),
            autoflush=False,
            expire_on_commit=False,
            future=True,
        )
    return _SESSION_FACTORY


def get_session() -> Session:
    return get_session_factory()()


@contextmanager
def session_scope() -> Iterator[Session]:
    """Commit on success, roll back on any exception, always close."""

    session = get_session()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def reset_engine() -> None:
    """Dispose the cached engine and session factory so the next use rebuilds them."""

    global _ENGINE, _SESSION_FACTORY, _MODELS_IMPORTED
    if _SESSION_FACTORY is not None:
        close_all_sessions()
    if _ENGINE is not None:
        _ENGINE.dispose()
    _ENGINE = None
    _SESSION_FACTORY = None
    _MODELS_IMPORTED = False
