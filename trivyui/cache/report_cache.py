"""TTL key/value cache for serialised report data, with disk snapshots.

Values are opaque ``bytes`` (JSON produced by the reader).  Each entry carries
an absolute wall-clock expiry so a snapshot written by one process is still
meaningful to the next one.  The cache is an accelerator, not a store of
record: losing it costs API round-trips, never correctness.

Snapshot file layout::

    {
      "version": 1,
      "saved_at": 1718000000.0,
      "entries": {"<key>": {"value": "<base64>", "expires_at": 1718000300.0 | null}}
    }
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import json
import os
import random
import tempfile
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from trivyui.errors import CacheSnapshotError
from trivyui.observability.logging import get_logger
from trivyui.observability.metrics import cache_entries, cache_snapshots_total

_log = get_logger("report_cache")

_SNAPSHOT_VERSION = 1


class _TTL(Enum):
    DEFAULT = "default"


DEFAULT = _TTL.DEFAULT
NEVER_EXPIRE = None

TTL = float | None | _TTL


@dataclass(frozen=True)
class CacheEntry:
    value: bytes
    expires_at: float | None = None  # None = never expires

    def expired(self, now: float) -> bool:
        return self.expires_at is not None and now >= self.expires_at


def jittered(ttl: float, rng: Callable[[], float] = random.random) -> float:
    """Spread expiry of *ttl* over ``[ttl, 2 * ttl)`` to avoid refetch storms."""
    return ttl * (1.0 + rng())


class ReportCache:
    """In-memory TTL cache keyed by :mod:`trivyui.cache.keys` strings.

    Thread-safe: the persister snapshots the store from a worker thread while
    request handlers read and write from the event loop.
    """

    def __init__(
        self,
        default_ttl: float = 300.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._default_ttl = default_ttl
        self._clock = clock
        self._store: dict[str, CacheEntry] = {}
        # Bumped by invalidate_prefix(); never persisted.
        self._generations: dict[str, int] = {}
        self._lock = threading.RLock()

    @property
    def default_ttl(self) -> float:
        return self._default_ttl

    # ------------------------------------------------------------------
    # Key/value interface
    # ------------------------------------------------------------------

    def get(self, key: str) -> bytes | None:
        """Return the value for *key*, or None when absent or expired."""
        now = self._clock()
        with self._lock:
            entry = self._store.get(key)
            if entry is None:
                return None
            if entry.expired(now):
                del self._store[key]
                cache_entries.set(len(self._store))
                return None
            return entry.value

    def set(self, key: str, value: bytes, ttl: TTL = DEFAULT) -> None:
        """Store *value* under *key*.

        *ttl* is seconds, :data:`NEVER_EXPIRE`, or :data:`DEFAULT` for the
        configured default.
        """
        if ttl is DEFAULT:
            ttl = self._default_ttl
        expires_at = None if ttl is None else self._clock() + float(ttl)
        with self._lock:
            self._store[key] = CacheEntry(value=value, expires_at=expires_at)
            cache_entries.set(len(self._store))

    def delete(self, key: str) -> bool:
        with self._lock:
            removed = self._store.pop(key, None) is not None
            cache_entries.set(len(self._store))
        return removed

    def delete_prefix(self, prefix: str) -> int:
        """Remove every key starting with *prefix*; return how many were removed."""
        with self._lock:
            doomed = [key for key in self._store if key.startswith(prefix)]
            for key in doomed:
                del self._store[key]
            cache_entries.set(len(self._store))
        return len(doomed)

    def invalidate_prefix(self, prefix: str) -> int:
        """Drop every key under *prefix* and advance the prefix's generation.

        A fetch that read :meth:`generation` before this call and finishes
        after it must not store its result.
        """
        with self._lock:
            self._generations[prefix] = self._generations.get(prefix, 0) + 1
            return self.delete_prefix(prefix)

    def generation(self, prefix: str) -> int:
        with self._lock:
            return self._generations.get(prefix, 0)

    def sweep_expired(self) -> int:
        now = self._clock()
        with self._lock:
            doomed = [key for key, entry in self._store.items() if entry.expired(now)]
            for key in doomed:
                del self._store[key]
            cache_entries.set(len(self._store))
        return len(doomed)

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._store)

    def has_data(self) -> bool:
        """True when at least one unexpired entry is present."""
        now = self._clock()
        with self._lock:
            return any(not entry.expired(now) for entry in self._store.values())

    def __len__(self) -> int:
        with self._lock:
            return len(self._store)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def save_to_disk(self, path: str) -> int:
        """Atomically write all unexpired entries to *path*.

        Returns the number of entries written.  I/O errors propagate.
        """
        now = self._clock()
        with self._lock:
            live = {key: entry for key, entry in self._store.items() if not entry.expired(now)}

        document = {
            "version": _SNAPSHOT_VERSION,
            "saved_at": now,
            "entries": {
                key: {
                    "value": base64.b64encode(entry.value).decode("ascii"),
                    "expires_at": entry.expires_at,
                }
                for key, entry in live.items()
            },
        }

        directory = os.path.dirname(os.path.abspath(path))
        os.makedirs(directory, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(prefix=".trivy-cache-", suffix=".tmp", dir=directory)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(document, fh, separators=(",", ":"))
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_path, path)
        except BaseException:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise
        return len(live)

    def load_from_disk(self, path: str) -> int:
        """Merge a snapshot from *path* into the cache.

        A missing file is a cold start and loads nothing.  Entries that
        expired while the process was down are dropped.

        Raises:
            CacheSnapshotError: the file exists but cannot be decoded.
        """
        try:
            with open(path, encoding="utf-8") as fh:
                document = json.load(fh)
        except FileNotFoundError:
            _log.info("cache_snapshot_missing", path=path)
            return 0
        except (OSError, ValueError) as exc:
            raise CacheSnapshotError(f"Cannot read cache snapshot '{path}': {exc}") from exc

        entries = _decode_entries(path, document)
        now = self._clock()
        loaded = {key: entry for key, entry in entries.items() if not entry.expired(now)}
        with self._lock:
            self._store.update(loaded)
            cache_entries.set(len(self._store))
        _log.info(
            "cache_snapshot_loaded",
            path=path,
            entries=len(loaded),
            dropped_expired=len(entries) - len(loaded),
        )
        return len(loaded)

    async def save(self, path: str) -> int | None:
        """Sweep and save off the event loop; log failures instead of raising."""
        self.sweep_expired()
        try:
            written = await asyncio.to_thread(self.save_to_disk, path)
        except OSError as exc:
            cache_snapshots_total.labels(outcome="error").inc()
            _log.error("cache_snapshot_save_failed", path=path, error=str(exc))
            return None
        cache_snapshots_total.labels(outcome="success").inc()
        _log.debug("cache_snapshot_saved", path=path, entries=written)
        return written

    async def run_persister(self, path: str, interval: float) -> None:
        """Save a snapshot every *interval* seconds until cancelled."""
        while True:
            await asyncio.sleep(interval)
            await self.save(path)


def _decode_entries(path: str, document: Any) -> dict[str, CacheEntry]:
    if not isinstance(document, dict) or not isinstance(document.get("entries"), dict):
        raise CacheSnapshotError(f"Cache snapshot '{path}' has no entries table")
    version = document.get("version")
    if version != _SNAPSHOT_VERSION:
        raise CacheSnapshotError(f"Cache snapshot '{path}' has unsupported version {version!r}")

    entries: dict[str, CacheEntry] = {}
    for key, raw in document["entries"].items():
        if not isinstance(raw, dict):
            raise CacheSnapshotError(f"Cache snapshot '{path}': malformed entry for key {key!r}")
        expires_at = raw.get("expires_at")
        if expires_at is not None and not isinstance(expires_at, int | float):
            raise CacheSnapshotError(f"Cache snapshot '{path}': bad expiry for key {key!r}")
        try:
            value = base64.b64decode(raw.get("value", ""), validate=True)
        except (binascii.Error, TypeError, ValueError) as exc:
            raise CacheSnapshotError(f"Cache snapshot '{path}': bad payload for key {key!r}") from exc
        entries[key] = CacheEntry(value=value, expires_at=None if expires_at is None else float(expires_at))
    return entries
