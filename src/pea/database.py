"""SQLite file holding the key-value table, and its Alembic migrations.

Each CLI command opens one session on its own engine and disposes of both
when it is done, so nothing is cached at module level.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from alembic import command as alembic_command
from alembic.config import Config as AlembicConfig
from alembic.runtime.migration import MigrationContext
from sqlalchemy import create_engine
from sqlalchemy.orm import Session

# alembic.ini and alembic/ sit at the repository root, two levels above src/pea.
PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent


def sqlite_url(db_path: str | Path) -> str:
    return f"sqlite:///{db_path}"


def _migrations(db_path: Path) -> AlembicConfig:
    cfg = AlembicConfig(str(PROJECT_ROOT / "alembic.ini"))
    cfg.set_main_option("script_location", str(PROJECT_ROOT / "alembic"))
    cfg.set_main_option("sqlalchemy.url", sqlite_url(db_path))
    return cfg


@contextmanager
def _quiet_alembic() -> Iterator[None]:
    # Alembic logs every applied revision at INFO.
    alembic_logger = logging.getLogger("alembic")
    prev_level = alembic_logger.level
    alembic_logger.setLevel(logging.WARNING)
    try:
        yield
    finally:
        alembic_logger.setLevel(prev_level)


def current_revision(db_path: str | Path) -> str | None:
    """Alembic revision the database is at, or None if it was never migrated."""
    db_path = Path(db_path)
    if not db_path.exists():
        return None
    engine = create_engine(sqlite_url(db_path))
    try:
        with engine.connect() as conn:
            return MigrationContext.configure(conn).get_current_revision()
    finally:
        engine.dispose()


def init_db(db_path: str | Path) -> str | None:
    """Create the SQLite file if needed and migrate it to head.

    Safe to call on every run. Returns the revision the database ends up at.
    """
    db_path = Path(db_path)
    db_path.parent.mkdir(parents=True, exist_ok=True)
    with _quiet_alembic():
        alembic_command.upgrade(_migrations(db_path), "head")
    return current_revision(db_path)


def open_session(db_path: str | Path) -> Session:
    """Migrate the database and open a session on a fresh engine.

    Pair with :func:`close_session`, which also disposes of the engine.
    """
    init_db(db_path)
    return Session(bind=create_engine(sqlite_url(db_path), echo=False))


def close_session(session: Session) -> None:
    engine = session.get_bind()
    session.close()
    engine.dispose()
