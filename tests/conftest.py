"""Shared test fixtures."""

from __future__ import annotations

import datetime
from collections.abc import Callable
from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from pea.models import kv  # noqa: F401
from pea.models.base import Base
from pea.services.version_service import VersionGrouper
from pea.store import MemoryKeyValueStore, SqlKeyValueStore


@pytest.fixture()
def tmp_db(tmp_path: Path) -> Path:
    """Return a temporary database file path."""
    return tmp_path / "test.db"


@pytest.fixture()
def session(tmp_db: Path) -> Session:
    """Create a SQLite session with all tables."""
    engine = create_engine(f"sqlite:///{tmp_db}", echo=False)
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine)
    sess = factory()
    yield sess  # type: ignore[misc]
    sess.close()
    engine.dispose()


@pytest.fixture()
def sql_store(session: Session) -> SqlKeyValueStore:
    return SqlKeyValueStore(session)


@pytest.fixture()
def store() -> MemoryKeyValueStore:
    return MemoryKeyValueStore()


@pytest.fixture()
def clock() -> Callable[[], datetime.datetime]:
    """A clock that moves forward one second per call."""
    current = [datetime.datetime(2024, 1, 1, tzinfo=datetime.timezone.utc)]

    def tick() -> datetime.datetime:
        current[0] += datetime.timedelta(seconds=1)
        return current[0]

    return tick


@pytest.fixture()
def grouper(store: MemoryKeyValueStore, clock) -> VersionGrouper:
    """Return a VersionGrouper over an empty in-memory store."""
    return VersionGrouper(store, clock=clock)
