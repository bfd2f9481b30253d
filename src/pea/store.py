"""Key-value stores the version history is persisted through."""

from __future__ import annotations

from typing import Protocol

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from pea.models.kv import KeyValueEntry


class KeyValueStore(Protocol):
    """Minimal string key-value interface."""

    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def remove(self, key: str) -> None: ...


class MemoryKeyValueStore:
    """Dict-backed store, used in tests and when nothing needs to survive the process."""

    def __init__(self, data: dict[str, str] | None = None) -> None:
        self._data: dict[str, str] = dict(data or {})

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)


class SqlKeyValueStore:
    """Store backed by the ``kv_entries`` table.

    Writes are flushed but not committed; the owner of the session decides
    when to commit or roll back.
    """

    def __init__(self, session: Session) -> None:
        self._session = session

    def get(self, key: str) -> str | None:
        entry = self._session.get(KeyValueEntry, key)
        return entry.value if entry is not None else None

    def set(self, key: str, value: str) -> None:
        try:
            entry = self._session.get(KeyValueEntry, key)
            if entry is None:
                self._session.add(KeyValueEntry(key=key, value=value))
            else:
                entry.value = value
            self._session.flush()
        except SQLAlchemyError:
            self._session.rollback()
            raise

    def remove(self, key: str) -> None:
        try:
            entry = self._session.get(KeyValueEntry, key)
            if entry is not None:
                self._session.delete(entry)
                self._session.flush()
        except SQLAlchemyError:
            self._session.rollback()
            raise
