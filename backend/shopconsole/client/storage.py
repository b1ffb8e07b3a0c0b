"""
Durable client storage.

A small JSON file holding the values a browser would keep in cookies and
localStorage. Each key may carry an expiry (epoch seconds), like a cookie's
max-age; expired keys read as missing and are dropped on the next write.

Writes go to a temp file that replaces the original, so a crash mid-write
leaves the previous state intact.
"""

import json
import logging
import os
import tempfile
import time
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


class ClientStorage:
    def __init__(self, path: Optional[str] = None, clock: Callable[[], float] = time.time):
        self.path = path
        self._clock = clock
        self._data: dict[str, dict] = {}
        self._load()

    def _load(self) -> None:
        if not self.path or not os.path.exists(self.path):
            return
        try:
            with open(self.path, "r", encoding="utf-8") as fh:
                raw = json.load(fh)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Ignoring unreadable client state at {self.path}: {e}")
            return
        if isinstance(raw, dict):
            self._data = {k: v for k, v in raw.items() if isinstance(v, dict) and "value" in v}

    def _flush(self) -> None:
        now = self._clock()
        self._data = {k: v for k, v in self._data.items() if not self._expired(v, now)}
        if not self.path:
            return

        directory = os.path.dirname(os.path.abspath(self.path))
        os.makedirs(directory, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".state-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(self._data, fh, indent=2, sort_keys=True)
            os.replace(tmp_path, self.path)
        except OSError:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    @staticmethod
    def _expired(entry: dict, now: float) -> bool:
        expires_at = entry.get("expires_at")
        return expires_at is not None and expires_at <= now

    def get(self, key: str, default: Any = None) -> Any:
        entry = self._data.get(key)
        if entry is None or self._expired(entry, self._clock()):
            return default
        return entry["value"]

    def set(self, key: str, value: Any, max_age: Optional[float] = None) -> None:
        """Store value; max_age in seconds, None keeps it until deleted."""
        entry = {"value": value}
        if max_age is not None:
            entry["expires_at"] = self._clock() + max_age
        self._data[key] = entry
        self._flush()

    def delete(self, *keys: str) -> None:
        changed = False
        for key in keys:
            if self._data.pop(key, None) is not None:
                changed = True
        if changed:
            self._flush()

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None
