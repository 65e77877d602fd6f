"""Persistent key-value store for small sync scalars.

Only a handful of values survive a restart — the last health sync date and
the last successful sync time — so the contract is a tiny string store with
date helpers on top.
"""

from __future__ import annotations

import json
import logging
import os
import threading
from abc import ABC, abstractmethod
from datetime import date, datetime
from pathlib import Path

logger = logging.getLogger("alltime.store")


class KeyValueStore(ABC):
    """String key-value store that outlives the process."""

    @abstractmethod
    def get(self, key: str) -> str | None:
        """Return the stored string or None."""

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        """Store ``value`` under ``key``."""

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove ``key`` if present."""

    # ------------------------------------------------------------------
    # Typed helpers
    # ------------------------------------------------------------------

    def get_date(self, key: str) -> date | None:
        raw = self.get(key)
        if not raw:
            return None
        try:
            return date.fromisoformat(raw)
        except ValueError:
            logger.warning("Ignoring unparseable date for %s: %r", key, raw)
            return None

    def set_date(self, key: str, value: date) -> None:
        self.set(key, value.isoformat())

    def get_datetime(self, key: str) -> datetime | None:
        raw = self.get(key)
        if not raw:
            return None
        try:
            return datetime.fromisoformat(raw)
        except ValueError:
            logger.warning("Ignoring unparseable datetime for %s: %r", key, raw)
            return None

    def set_datetime(self, key: str, value: datetime) -> None:
        self.set(key, value.isoformat())


class InMemoryKeyValueStore(KeyValueStore):
    """Process-local store (tests, ephemeral sessions)."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._data: dict[str, str] = dict(initial or {})
        self._lock = threading.Lock()

    def get(self, key: str) -> str | None:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._data[key] = value

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def __len__(self) -> int:
        return len(self._data)


class JsonFileKeyValueStore(KeyValueStore):
    """Store backed by one JSON object on disk.

    Writes go to a temporary file that replaces the original, so a crash
    mid-write leaves the previous contents intact.
    """

    def __init__(self, path: Path | str) -> None:
        self._path = Path(path)
        self._lock = threading.Lock()
        self._data = self._read()

    @property
    def path(self) -> Path:
        return self._path

    def _read(self) -> dict[str, str]:
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8") or "{}")
        except json.JSONDecodeError as exc:
            raise ValueError(f"Corrupt key-value store at {self._path}: {exc}") from exc
        if not isinstance(data, dict):
            raise ValueError(f"Key-value store at {self._path} must hold a JSON object")
        return {str(k): str(v) for k, v in data.items()}

    def _write(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        tmp.write_text(json.dumps(self._data, sort_keys=True, indent=2), encoding="utf-8")
        os.replace(tmp, self._path)

    def get(self, key: str) -> str | None:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._data[key] = value
            self._write()

    def delete(self, key: str) -> None:
        with self._lock:
            if self._data.pop(key, None) is not None:
                self._write()
