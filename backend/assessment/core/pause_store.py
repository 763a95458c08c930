"""
Durable key-value storage for pause markers.

A pause marker is the instant an attempt was paused with "save & exit". It is
written before leaving the page and consumed on resume, so it must survive a
full reload of the client. Any store with get/set/clear semantics works.
"""
import abc
import json
import logging
import os
import tempfile
import threading
from datetime import datetime
from pathlib import Path
from typing import Dict, Optional

from assessment.core.config import settings
from assessment.core.datetime_utils import ensure_timezone_aware

logger = logging.getLogger(__name__)


def pause_marker_key(attempt_id: str) -> str:
    return f"test_paused_{attempt_id}"


def paused_total_key(attempt_id: str) -> str:
    return f"test_paused_total_{attempt_id}"


class KeyValueStore(abc.ABC):
    """Minimal durable string store."""

    @abc.abstractmethod
    def get(self, key: str) -> Optional[str]:
        """Return the stored value or None."""

    @abc.abstractmethod
    def set(self, key: str, value: str) -> None:
        """Store a value, replacing any previous one."""

    @abc.abstractmethod
    def clear(self, key: str) -> None:
        """Remove a key. Removing a missing key is not an error."""

    def pop(self, key: str) -> Optional[str]:
        """Read and clear a key in one step."""
        value = self.get(key)
        if value is not None:
            self.clear(key)
        return value


class InMemoryKeyValueStore(KeyValueStore):
    """Process-local store. Does not survive a restart."""

    def __init__(self) -> None:
        self._data: Dict[str, str] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._data[key] = value

    def clear(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def pop(self, key: str) -> Optional[str]:
        with self._lock:
            return self._data.pop(key, None)


class JsonFileKeyValueStore(KeyValueStore):
    """Store backed by a JSON file, rewritten atomically on every change."""

    def __init__(self, path: os.PathLike) -> None:
        self._path = Path(path)
        self._lock = threading.Lock()

    def _load(self) -> Dict[str, str]:
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning(f"Ignoring unreadable pause marker file {self._path}: {e}")
            return {}
        if not isinstance(data, dict):
            return {}
        return {str(k): str(v) for k, v in data.items()}

    def _save(self, data: Dict[str, str]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self._path.parent, suffix=".tmp")
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            json.dump(data, fh)
        os.replace(tmp_name, self._path)

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._load().get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            data = self._load()
            data[key] = value
            self._save(data)

    def clear(self, key: str) -> None:
        with self._lock:
            data = self._load()
            if key in data:
                del data[key]
                self._save(data)

    def pop(self, key: str) -> Optional[str]:
        with self._lock:
            data = self._load()
            value = data.pop(key, None)
            if value is not None:
                self._save(data)
            return value


class PauseMarkerStore:
    """Typed access to pause markers keyed by attempt id."""

    def __init__(self, store: KeyValueStore) -> None:
        self._store = store

    def stamp(self, attempt_id: str, paused_at: datetime) -> None:
        self._store.set(
            pause_marker_key(attempt_id), ensure_timezone_aware(paused_at).isoformat()
        )

    def peek(self, attempt_id: str) -> Optional[datetime]:
        return _parse(self._store.get(pause_marker_key(attempt_id)))

    def consume(self, attempt_id: str) -> Optional[datetime]:
        """Return the marker and remove it, so a second call returns None."""
        return _parse(self._store.pop(pause_marker_key(attempt_id)))

    def total_paused(self, attempt_id: str) -> int:
        """Seconds refunded by earlier pause/resume cycles of this attempt."""
        raw = self._store.get(paused_total_key(attempt_id))
        try:
            return max(0, int(raw)) if raw is not None else 0
        except ValueError:
            logger.warning(f"Discarding malformed paused total: {raw!r}")
            return 0

    def record_total_paused(self, attempt_id: str, seconds: int) -> None:
        self._store.set(paused_total_key(attempt_id), str(int(seconds)))

    def forget(self, attempt_id: str) -> None:
        """Drop everything stored for a finished attempt."""
        self._store.clear(pause_marker_key(attempt_id))
        self._store.clear(paused_total_key(attempt_id))


def _parse(raw: Optional[str]) -> Optional[datetime]:
    if raw is None:
        return None
    try:
        return ensure_timezone_aware(datetime.fromisoformat(raw))
    except ValueError:
        logger.warning(f"Discarding malformed pause marker: {raw!r}")
        return None


def default_key_value_store() -> KeyValueStore:
    """File-backed store when PAUSE_MARKER_PATH is configured, in-memory otherwise."""
    if settings.PAUSE_MARKER_PATH:
        return JsonFileKeyValueStore(settings.PAUSE_MARKER_PATH)
    return InMemoryKeyValueStore()
