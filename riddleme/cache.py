"""
In-memory TTL cache for the riddle game.
Leaderboard responses are cached briefly and dropped whenever scores change.
"""

import threading
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

LEADERBOARD_PREFIX = "leaderboard:"


@dataclass
class CacheEntry:
    """A single cache entry with value and expiration"""
    value: Any
    expires_at: float
    created_at: float


class MemoryCache:
    """Thread-safe in-memory cache with TTL support"""

    def __init__(self):
        self._cache: Dict[str, CacheEntry] = {}
        self._lock = threading.RLock()
        self._stats = {
            'hits': 0,
            'misses': 0,
            'sets': 0,
            'evictions': 0
        }

    def get(self, key: str) -> Optional[Any]:
        """Get a value from cache, return None if not found or expired"""
        with self._lock:
            entry = self._cache.get(key)
            if entry is None:
                self._stats['misses'] += 1
                return None
            if time.time() > entry.expires_at:
                del self._cache[key]
                self._stats['misses'] += 1
                self._stats['evictions'] += 1
                return None
            self._stats['hits'] += 1
            return entry.value

    def set(self, key: str, value: Any, ttl_seconds: int = 60) -> None:
        with self._lock:
            now = time.time()
            self._cache[key] = CacheEntry(value=value, expires_at=now + ttl_seconds, created_at=now)
            self._stats['sets'] += 1

    def delete_prefix(self, prefix: str) -> int:
        """Delete every key starting with prefix, return how many were removed"""
        with self._lock:
            keys = [k for k in self._cache if k.startswith(prefix)]
            for k in keys:
                del self._cache[k]
            self._stats['evictions'] += len(keys)
            return len(keys)

    def clear(self) -> None:
        with self._lock:
            self._stats['evictions'] += len(self._cache)
            self._cache.clear()

    def cleanup_expired(self) -> int:
        """Remove all expired entries, return count of removed entries"""
        with self._lock:
            now = time.time()
            expired_keys = [key for key, entry in self._cache.items() if now > entry.expires_at]
            for key in expired_keys:
                del self._cache[key]
            self._stats['evictions'] += len(expired_keys)
            return len(expired_keys)

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            total_requests = self._stats['hits'] + self._stats['misses']
            hit_rate = (self._stats['hits'] / total_requests * 100) if total_requests > 0 else 0
            return {
                **self._stats,
                'total_requests': total_requests,
                'hit_rate_percent': round(hit_rate, 2),
                'cache_size': len(self._cache),
            }


# Global cache instance
_cache = MemoryCache()


def get_cache() -> MemoryCache:
    return _cache


def cache_leaderboard(limit: int, leaderboard: list, ttl_seconds: int = 30) -> None:
    # limit is client chosen; expired sizes are purged on each write
    _cache.cleanup_expired()
    _cache.set(f"{LEADERBOARD_PREFIX}{limit}", leaderboard, ttl_seconds)


def get_cached_leaderboard(limit: int) -> Optional[list]:
    return _cache.get(f"{LEADERBOARD_PREFIX}{limit}")


def invalidate_leaderboard_cache() -> None:
    """Drop cached leaderboards of every size after a score change"""
    _cache.delete_prefix(LEADERBOARD_PREFIX)
