import hashlib
import json
import re
import time
from pathlib import Path
from typing import Any

from filelock import FileLock

from logger import get_logger

logger = get_logger(__name__)


def build_cache_key(provider_id: str, endpoint_id: str, params: dict[str, Any]) -> str:
    """Build a stable cache key for an upstream API request."""
    param_hash = json.dumps(params, sort_keys=True, default=str, ensure_ascii=False)
    return f"api:{provider_id}:{endpoint_id}:{param_hash}"


class ResponseCache:
    """TTL cache of upstream API responses, one JSON file per key."""

    def __init__(self, cache_dir: str | Path, default_ttl: int = 3600):
        """
        Initialize response cache.

        Args:
            cache_dir: Directory to store cache entries
            default_ttl: Time-to-live in seconds (default: 1 hour)
        """
        self.cache_dir = Path(cache_dir)
        self.default_ttl = default_ttl
        self.hits = 0
        self.misses = 0

    def get_cache_path(self, key: str) -> Path:
        """Generate a file path for a cache key."""
        if not self.cache_dir.exists():
            self.cache_dir.mkdir(parents=True, exist_ok=True)

        # Hash the key to create a safe filename
        safe_key = hashlib.md5(key.encode()).hexdigest()
        return self.cache_dir / f"{safe_key}.json"

    def _read_entry(self, cache_path: Path) -> dict | None:
        # Skip locking for absent entries so misses leave no lock file behind
        if not cache_path.exists():
            return None
        lock_path = cache_path.with_suffix(".lock")
        with FileLock(lock_path, timeout=5):
            if not cache_path.exists():
                return None
            with open(cache_path, encoding="utf-8") as f:
                return json.load(f)

    def get(self, key: str) -> Any | None:
        """Retrieve a value if it exists and hasn't expired."""
        cache_path = self.get_cache_path(key)

        try:
            entry = self._read_entry(cache_path)
        except Exception as e:
            logger.warning(f"Failed to read cache: {e}")
            entry = None

        if entry is None:
            self.misses += 1
            logger.debug(f"Cache miss for key: {key}")
            return None

        if time.time() >= entry.get("expires_at", 0):
            self.misses += 1
            logger.debug(f"Cache expired for key: {key}")
            self.delete(key)
            return None

        self.hits += 1
        logger.debug(f"Cache hit for key: {key}")
        return entry.get("data")

    def set(self, key: str, data: Any, ttl: int | None = None) -> None:
        """Save a value with a TTL in seconds (default_ttl when omitted)."""
        cache_path = self.get_cache_path(key)
        lock_path = cache_path.with_suffix(".lock")
        ttl = ttl if ttl is not None else self.default_ttl

        try:
            with FileLock(lock_path, timeout=5):
                entry = {
                    "key": key,
                    "expires_at": time.time() + ttl,
                    "data": data,
                }
                with open(cache_path, "w", encoding="utf-8") as f:
                    json.dump(entry, f, default=str)
            logger.debug(f"Cached data for key: {key} (ttl={ttl}s)")

        except Exception as e:
            logger.warning(f"Failed to write cache: {e}")

    def has(self, key: str) -> bool:
        cache_path = self.get_cache_path(key)
        try:
            entry = self._read_entry(cache_path)
        except Exception:
            return False
        return entry is not None and time.time() < entry.get("expires_at", 0)

    def delete(self, key: str) -> bool:
        cache_path = self.get_cache_path(key)
        lock_path = cache_path.with_suffix(".lock")
        removed = False
        try:
            with FileLock(lock_path, timeout=5):
                if cache_path.exists():
                    cache_path.unlink()
                    removed = True
            lock_path.unlink(missing_ok=True)
        except Exception as e:
            logger.warning(f"Failed to delete cache entry: {e}")
        return removed

    def _entries(self):
        if not self.cache_dir.exists():
            return
        for cache_path in self.cache_dir.glob("*.json"):
            try:
                entry = self._read_entry(cache_path)
            except Exception as e:
                logger.warning(f"Skipping unreadable cache file {cache_path}: {e}")
                continue
            if entry is not None:
                yield cache_path, entry

    def delete_pattern(self, pattern: str | re.Pattern) -> int:
        """Delete every entry whose key matches the regex. Returns the count removed."""
        regex = re.compile(pattern) if isinstance(pattern, str) else pattern
        removed = 0
        for _, entry in list(self._entries()):
            key = entry.get("key", "")
            if regex.search(key) and self.delete(key):
                removed += 1

        logger.info(f"Deleted {removed} cache entries matching pattern: {regex.pattern}")
        return removed

    def clear(self) -> None:
        """Remove all entries and reset hit/miss counters."""
        if self.cache_dir.exists():
            for path in self.cache_dir.glob("*"):
                if path.is_file():
                    try:
                        path.unlink()
                    except Exception as e:
                        logger.warning(f"Failed to remove {path}: {e}")
        self.hits = 0
        self.misses = 0
        logger.info("Response cache cleared")

    def size(self) -> int:
        now = time.time()
        return sum(1 for _, entry in self._entries() if now < entry.get("expires_at", 0))

    def stats(self) -> dict:
        total = self.hits + self.misses
        hit_rate = self.hits / total if total else 0.0
        return {
            "hits": self.hits,
            "misses": self.misses,
            "size": self.size(),
            "hit_rate": round(hit_rate * 100, 2),
        }
