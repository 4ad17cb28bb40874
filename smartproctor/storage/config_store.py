"""
ConfigStore — key/value store for operator settings (model API keys,
analysis backend URL, …).

Backends, in fallback order:
  1. DatabaseConfigStore — `config_entries` table via SQLAlchemy
  2. MemoryConfigStore   — process-local dict, lost on restart

`open_config_store()` picks the backend once at startup; callers keep
the returned instance and never re-detect availability per call.
Values are stored JSON-encoded so numbers and booleans round-trip.
"""
from __future__ import annotations

import abc
import json
import logging
import threading
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.engine import Engine

from smartproctor.db.database import (
    Base,
    check_db_connection,
    get_db,
    get_engine,
    session_factory,
)
from smartproctor.db.models import ConfigEntry

logger = logging.getLogger(__name__)


class ConfigStore(abc.ABC):

    backend: str = "abstract"

    @abc.abstractmethod
    def get(self, key: str, default: Any = None) -> Any:
        """Return the stored value, or `default` when the key is unset."""

    @abc.abstractmethod
    def set(self, key: str, value: Any) -> None:
        """Store `value` under `key`, replacing any previous value."""

    @abc.abstractmethod
    def clear(self, key: str | None = None) -> None:
        """Remove one key, or every key when `key` is None."""

    @abc.abstractmethod
    def items(self) -> dict[str, Any]:
        """Snapshot of every stored entry."""


class MemoryConfigStore(ConfigStore):

    backend = "memory"

    def __init__(self) -> None:
        self._data: dict[str, str] = {}
        self._lock = threading.Lock()

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            raw = self._data.get(key)
        return default if raw is None else json.loads(raw)

    def set(self, key: str, value: Any) -> None:
        raw = json.dumps(value)
        with self._lock:
            self._data[key] = raw

    def clear(self, key: str | None = None) -> None:
        with self._lock:
            if key is None:
                self._data.clear()
            else:
                self._data.pop(key, None)

    def items(self) -> dict[str, Any]:
        with self._lock:
            return {k: json.loads(v) for k, v in self._data.items()}


class DatabaseConfigStore(ConfigStore):

    backend = "database"

    def __init__(self, engine: Engine | None = None) -> None:
        self._engine  = engine or get_engine()
        self._factory = session_factory(self._engine)
        Base.metadata.create_all(self._engine, tables=[ConfigEntry.__table__])

    def get(self, key: str, default: Any = None) -> Any:
        with get_db(self._factory) as db:
            entry = db.get(ConfigEntry, key)
            raw = entry.value if entry is not None else None
        return default if raw is None else json.loads(raw)

    def set(self, key: str, value: Any) -> None:
        raw = json.dumps(value)
        with get_db(self._factory) as db:
            entry = db.get(ConfigEntry, key)
            if entry is None:
                db.add(ConfigEntry(key=key, value=raw))
            else:
                entry.value = raw

    def clear(self, key: str | None = None) -> None:
        stmt = delete(ConfigEntry)
        if key is not None:
            stmt = stmt.where(ConfigEntry.key == key)
        with get_db(self._factory) as db:
            db.execute(stmt)

    def items(self) -> dict[str, Any]:
        with get_db(self._factory) as db:
            rows = db.execute(select(ConfigEntry.key, ConfigEntry.value)).all()
        return {k: json.loads(v) for k, v in rows}


def open_config_store(engine: Engine | None = None) -> ConfigStore:
    """Choose the config backend once: database when reachable, else memory."""
    try:
        engine = engine or get_engine()
        if check_db_connection(engine):
            store = DatabaseConfigStore(engine)
            logger.info("Config store: database backend (%s)", engine.url.render_as_string(hide_password=True))
            return store
    except Exception as exc:
        logger.warning("Config store: database backend unavailable: %s", exc)

    logger.warning("Config store: falling back to in-memory backend (settings will not persist)")
    return MemoryConfigStore()
