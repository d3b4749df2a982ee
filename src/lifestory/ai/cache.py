"""Content-addressed cache for AI responses.

The gateway is the only user of the cache. Keys are opaque strings built
by :func:`build_cache_key` from the full message list and the sampling
parameters, so identical requests always resolve to the same entry. Values
are JSON-serializable dicts stored with a TTL.

Two stores implement the :class:`CacheStore` contract:

- :class:`MemoryCacheStore`: process-local, thread-safe.
- :class:`FileCacheStore`: one JSON file per entry, written atomically,
  survives restarts and can be shared by several workers on one machine.

Neither store raises from ``get`` or ``set``. A broken cache degrades to
cache misses, never to failed generations.

Example:
    >>> cache = MemoryCacheStore()
    >>> key = build_cache_key([{"role": "user", "content": "hi"}], "gemini-2.0-flash", 0.7, 100)
    >>> cache.set(key, {"content": "hello"}, ttl_seconds=60)
    True
    >>> cache.get(key)
    {'content': 'hello'}
"""

from __future__ import annotations

import fnmatch
import hashlib
import json
import logging
import os
import tempfile
import threading
import time
from pathlib import Path
from typing import Any, Callable, Protocol

from pydantic import BaseModel, ValidationError

logger = logging.getLogger(__name__)

KEY_PREFIX = "ai_response"


# =============================================================================
# Keys and Entries
# =============================================================================


def build_cache_key(
    messages: list[dict[str, str]],
    model: str,
    temperature: float,
    max_tokens: int,
) -> str:
    """Hash a request into a cache key.

    Args:
        messages: The full message list, including any injected system prompt.
        model: Model name.
        temperature: Sampling temperature.
        max_tokens: Completion budget.

    Returns:
        ``ai_response:<sha256 hex>``.
    """
    canonical = json.dumps(
        {
            "messages": messages,
            "model": model,
            "temperature": temperature,
            "max_tokens": max_tokens,
        },
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    )
    digest = hashlib.sha256(canonical.encode("utf-8")).hexdigest()
    return f"{KEY_PREFIX}:{digest}"


class CacheEntry(BaseModel):
    """One stored value and its lifetime."""

    key: str
    value: dict[str, Any]
    created_at: float
    expires_at: float | None = None

    def is_expired(self, now: float) -> bool:
        return self.expires_at is not None and now >= self.expires_at


class CacheStore(Protocol):
    """Key/value store with TTL and glob-pattern deletion."""

    def get(self, key: str) -> dict[str, Any] | None:
        ...

    def set(self, key: str, value: dict[str, Any], ttl_seconds: float | None = None) -> bool:
        ...

    def exists(self, key: str) -> bool:
        ...

    def delete(self, key: str) -> bool:
        ...

    def delete_pattern(self, pattern: str) -> int:
        ...

    def clear(self) -> int:
        ...

    def get_stats(self) -> dict[str, Any]:
        ...


# =============================================================================
# Memory Store
# =============================================================================


class MemoryCacheStore:
    """Thread-safe in-process cache.

    Concurrent writers of the same key simply overwrite each other; values
    for one key are deterministic so the last write wins harmlessly.
    """

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._entries: dict[str, CacheEntry] = {}
        self._lock = threading.Lock()
        self._clock = clock
        self._hits = 0
        self._misses = 0

    def get(self, key: str) -> dict[str, Any] | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and entry.is_expired(self._clock()):
                del self._entries[key]
                entry = None
            if entry is None:
                self._misses += 1
                return None
            self._hits += 1
            return dict(entry.value)

    def set(self, key: str, value: dict[str, Any], ttl_seconds: float | None = None) -> bool:
        now = self._clock()
        entry = CacheEntry(
            key=key,
            value=dict(value),
            created_at=now,
            expires_at=now + ttl_seconds if ttl_seconds is not None else None,
        )
        with self._lock:
            self._entries[key] = entry
        return True

    def exists(self, key: str) -> bool:
        with self._lock:
            entry = self._entries.get(key)
            return entry is not None and not entry.is_expired(self._clock())

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def delete_pattern(self, pattern: str) -> int:
        with self._lock:
            doomed = [key for key in self._entries if fnmatch.fnmatchcase(key, pattern)]
            for key in doomed:
                del self._entries[key]
        if doomed:
            logger.debug(f"Deleted {len(doomed)} cache entries matching {pattern}")
        return len(doomed)

    def clear(self) -> int:
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
        return count

    def get_stats(self) -> dict[str, Any]:
        with self._lock:
            return {
                "backend": "memory",
                "entry_count": len(self._entries),
                "hits": self._hits,
                "misses": self._misses,
            }


# =============================================================================
# File Store
# =============================================================================


class FileCacheStore:
    """Cache persisted as one JSON file per entry.

    Attributes:
        cache_dir: Directory holding the entry files.
        enabled: False when the directory could not be created; every
            operation is then a no-op miss.
    """

    def __init__(
        self,
        cache_dir: Path,
        enabled: bool = True,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.cache_dir = Path(cache_dir).expanduser()
        self.enabled = enabled
        self._clock = clock

        if self.enabled:
            try:
                self.cache_dir.mkdir(parents=True, exist_ok=True)
                logger.debug(f"Cache initialized at: {self.cache_dir}")
            except OSError as e:
                logger.warning(f"Failed to create cache directory, caching disabled: {type(e).__name__}")
                self.enabled = False

    def _path_for(self, key: str) -> Path:
        return self.cache_dir / f"{hashlib.sha256(key.encode('utf-8')).hexdigest()[:32]}.json"

    def _read(self, path: Path) -> CacheEntry | None:
        try:
            return CacheEntry.model_validate_json(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError, ValidationError) as e:
            logger.warning(f"Cache entry unreadable ({type(e).__name__}): {path.name}")
            return None

    def get(self, key: str) -> dict[str, Any] | None:
        if not self.enabled:
            return None
        path = self._path_for(key)
        entry = self._read(path)
        if entry is None or entry.key != key:
            return None
        if entry.is_expired(self._clock()):
            path.unlink(missing_ok=True)
            logger.debug(f"Cache entry expired: {key[:24]}...")
            return None
        return entry.value

    def set(self, key: str, value: dict[str, Any], ttl_seconds: float | None = None) -> bool:
        """Write an entry atomically via a temp file and rename."""
        if not self.enabled:
            return False

        now = self._clock()
        entry = CacheEntry(
            key=key,
            value=value,
            created_at=now,
            expires_at=now + ttl_seconds if ttl_seconds is not None else None,
        )

        try:
            fd, temp_path = tempfile.mkstemp(dir=self.cache_dir, suffix=".tmp", prefix=".cache_")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(entry.model_dump_json())
                Path(temp_path).replace(self._path_for(key))
            except BaseException:
                Path(temp_path).unlink(missing_ok=True)
                raise
        except (OSError, TypeError, ValueError) as e:
            logger.warning(f"Cache store failed: {type(e).__name__}")
            return False

        logger.debug(f"Cached result: {key[:24]}...")
        return True

    def exists(self, key: str) -> bool:
        return self.get(key) is not None

    def delete(self, key: str) -> bool:
        if not self.enabled:
            return False
        path = self._path_for(key)
        if not path.exists():
            return False
        path.unlink(missing_ok=True)
        return True

    def _entries(self) -> list[tuple[Path, CacheEntry]]:
        found = []
        for path in self.cache_dir.glob("*.json"):
            entry = self._read(path)
            if entry is not None:
                found.append((path, entry))
        return found

    def delete_pattern(self, pattern: str) -> int:
        if not self.enabled:
            return 0
        count = 0
        for path, entry in self._entries():
            if fnmatch.fnmatchcase(entry.key, pattern):
                path.unlink(missing_ok=True)
                count += 1
        if count:
            logger.info(f"Deleted {count} cache entries matching {pattern}")
        return count

    def clear(self) -> int:
        if not self.enabled:
            return 0
        count = 0
        for path in self.cache_dir.glob("*.json"):
            path.unlink(missing_ok=True)
            count += 1
        if count:
            logger.info(f"Cleared {count} cache entries")
        return count

    def get_stats(self) -> dict[str, Any]:
        stats: dict[str, Any] = {
            "backend": "file",
            "enabled": self.enabled,
            "cache_dir": str(self.cache_dir),
            "entry_count": 0,
            "expired_count": 0,
            "total_size_bytes": 0,
        }
        if not self.enabled:
            return stats

        now = self._clock()
        for path, entry in self._entries():
            stats["entry_count"] += 1
            stats["expired_count"] += entry.is_expired(now)
            try:
                stats["total_size_bytes"] += path.stat().st_size
            except OSError:
                continue
        return stats
