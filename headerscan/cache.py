"""File-based response cache.

One JSON file per key, named by the SHA-256 of the request identity. Each
file holds ``{"timestamp": <epoch seconds>, "value": <payload>}``. Writes go
to a temporary file in the same directory and are renamed into place, so a
reader sees either the old entry or the new one, never a partial write.

Caching is an optimisation only: every I/O or decode problem is logged and
reported as a miss, never raised to the caller.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import tempfile
import time
from typing import Any, Callable, List, Optional, Tuple

logger = logging.getLogger(__name__)

DEFAULT_TTL = 3600
DEFAULT_MAX_ENTRIES = 1000
DEFAULT_EVICT_SLACK = 100

_ENTRY_SUFFIX = ".json"
_TMP_PREFIX = ".tmp-"


class ResponseCache:
    def __init__(
        self,
        cache_dir: str,
        ttl: int = DEFAULT_TTL,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        evict_slack: int = DEFAULT_EVICT_SLACK,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be >= 1")
        self._dir = cache_dir
        self._ttl = ttl
        self._max_entries = max_entries
        self._evict_slack = max(0, min(evict_slack, max_entries - 1))
        self._clock = clock
        os.makedirs(self._dir, exist_ok=True)

    @property
    def cache_dir(self) -> str:
        return self._dir

    @staticmethod
    def key_for(identity: str) -> str:
        return hashlib.sha256(identity.encode("utf-8")).hexdigest()

    def path_for(self, identity: str) -> str:
        return os.path.join(self._dir, self.key_for(identity) + _ENTRY_SUFFIX)

    def get(self, identity: str) -> Optional[Any]:
        """Return the cached value for ``identity`` or None on a miss."""
        path = self.path_for(identity)
        stamp = None
        try:
            with open(path, "r", encoding="utf-8") as f:
                stamp = _file_stamp(os.fstat(f.fileno()))
                record = json.load(f)
            timestamp = int(record["timestamp"])
            value = record["value"]
        except FileNotFoundError:
            return None
        except (OSError, ValueError, KeyError, TypeError) as exc:
            logger.warning("Discarding unreadable cache entry %s: %s", path, exc)
            self._remove_if_unchanged(path, stamp)
            return None

        if self._expired(timestamp):
            self._remove_if_unchanged(path, stamp)
            return None
        return value

    def set(self, identity: str, value: Any) -> None:
        """Store ``value`` for ``identity``; failures are logged, not raised."""
        path = self.path_for(identity)
        record = {"timestamp": int(self._clock()), "value": value}
        tmp_path = None
        try:
            payload = json.dumps(record, ensure_ascii=False)
            fd, tmp_path = tempfile.mkstemp(dir=self._dir, prefix=_TMP_PREFIX)
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, path)
            tmp_path = None
        except (OSError, TypeError, ValueError) as exc:
            logger.warning("Cache write failed for %s: %s", path, exc)
            return
        finally:
            if tmp_path is not None:
                self._remove(tmp_path)
        self._enforce_size_bound()

    def delete(self, identity: str) -> None:
        self._remove(self.path_for(identity))

    def clear(self) -> int:
        """Remove every entry. Returns the number of files removed."""
        removed = 0
        for path, _ in self._entries():
            if self._remove(path):
                removed += 1
        return removed

    def clear_expired(self) -> int:
        """Remove entries older than the TTL and unreadable ones."""
        removed = 0
        for path, _ in self._entries():
            try:
                with open(path, "r", encoding="utf-8") as f:
                    timestamp = int(json.load(f)["timestamp"])
            except FileNotFoundError:
                continue
            except (OSError, ValueError, KeyError, TypeError):
                timestamp = None
            if (timestamp is None or self._expired(timestamp)) and self._remove(path):
                removed += 1
        return removed

    def __len__(self) -> int:
        return len(self._entries())

    def _expired(self, timestamp: int) -> bool:
        return (self._clock() - timestamp) > self._ttl

    def _entries(self) -> List[Tuple[str, float]]:
        entries: List[Tuple[str, float]] = []
        try:
            names = os.listdir(self._dir)
        except OSError as exc:
            logger.warning("Cannot list cache directory %s: %s", self._dir, exc)
            return entries
        for name in names:
            if name.startswith(_TMP_PREFIX) or not name.endswith(_ENTRY_SUFFIX):
                continue
            path = os.path.join(self._dir, name)
            try:
                entries.append((path, os.path.getmtime(path)))
            except OSError:
                # Removed by a concurrent writer or eviction.
                continue
        return entries

    def _enforce_size_bound(self) -> None:
        entries = self._entries()
        if len(entries) <= self._max_entries:
            return
        target = self._max_entries - self._evict_slack
        entries.sort(key=lambda e: e[1])
        excess = len(entries) - target
        for path, _ in entries[:excess]:
            self._remove(path)
        logger.debug("Evicted %d cache entries from %s", excess, self._dir)

    def _remove_if_unchanged(self, path: str, stamp: Optional[Tuple[int, int]]) -> bool:
        """Remove ``path`` only if it is still the file that was read.

        A concurrent ``set`` renames a new file over the same path; deleting
        by name alone would throw that fresh entry away.
        """
        if stamp is None:
            return self._remove(path)
        try:
            current = _file_stamp(os.stat(path))
        except OSError:
            return False
        if current != stamp:
            logger.debug("Cache entry %s was rewritten while reading, keeping it", path)
            return False
        # A rename landing between stat and remove still loses the new entry; it is refetched next time.
        return self._remove(path)

    @staticmethod
    def _remove(path: str) -> bool:
        try:
            os.remove(path)
            return True
        except FileNotFoundError:
            return False
        except OSError as exc:
            logger.warning("Cannot remove cache file %s: %s", path, exc)
            return False


def _file_stamp(st: os.stat_result) -> Tuple[int, int]:
    return st.st_ino, st.st_mtime_ns
