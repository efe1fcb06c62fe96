"""
Keyed-blob storage for poller state.

The poller persists a handful of JSON-serializable blobs:
- prs: current PR list (for display)
- lastUpdated / error: outcome of the last cycle
- seenPRIds / prState: diffing state for the next cycle
- highlightedPRs: PR id -> event types from the last notification
- prFilter: last active display filter

`set()` writes all given keys as one operation so that a crash mid-cycle
leaves the previous snapshot intact.
"""

import copy
import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Any, Iterable, Optional, Union

logger = logging.getLogger(__name__)

STATE_KEYS = (
    "prs",
    "lastUpdated",
    "error",
    "seenPRIds",
    "prState",
    "highlightedPRs",
    "prFilter",
)


class StateStore:
    """Interface for keyed-blob persistence."""

    def get(self, keys: Iterable[str]) -> dict[str, Any]:
        """Return the stored values for the keys that exist."""
        raise NotImplementedError

    def set(self, values: dict[str, Any]) -> None:
        """Write all values in one atomic operation."""
        raise NotImplementedError

    def remove(self, keys: Iterable[str]) -> None:
        raise NotImplementedError

    def get_one(self, key: str, default: Any = None) -> Any:
        return self.get([key]).get(key, default)


class InMemoryStateStore(StateStore):
    """Process-local store, used in tests and when embedding the poller."""

    def __init__(self, initial: Optional[dict[str, Any]] = None):
        self._data: dict[str, Any] = copy.deepcopy(initial or {})
        self._lock = threading.Lock()

    def get(self, keys: Iterable[str]) -> dict[str, Any]:
        with self._lock:
            return {k: copy.deepcopy(self._data[k]) for k in keys if k in self._data}

    def set(self, values: dict[str, Any]) -> None:
        with self._lock:
            self._data.update(copy.deepcopy(values))

    def remove(self, keys: Iterable[str]) -> None:
        with self._lock:
            for key in keys:
                self._data.pop(key, None)


class JsonFileStateStore(StateStore):
    """
    Store all blobs in a single JSON document on disk.

    Writes go to a temporary file in the same directory which then replaces
    the document, so readers never see a half-written file.
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self._lock = threading.Lock()
        logger.info(f"Using state file {self.path}")

    def _read(self) -> dict[str, Any]:
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            return {}
        except json.JSONDecodeError as e:
            logger.warning(f"State file {self.path} is corrupt, starting fresh: {e}")
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self, data: dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, default=str)
            os.replace(tmp_path, self.path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    def get(self, keys: Iterable[str]) -> dict[str, Any]:
        with self._lock:
            data = self._read()
        return {k: data[k] for k in keys if k in data}

    def set(self, values: dict[str, Any]) -> None:
        with self._lock:
            data = self._read()
            data.update(values)
            self._write(data)
        logger.debug(f"Persisted keys: {', '.join(sorted(values))}")

    def remove(self, keys: Iterable[str]) -> None:
        with self._lock:
            data = self._read()
            for key in keys:
                data.pop(key, None)
            self._write(data)
