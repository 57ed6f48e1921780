"""
Artifact cache for ad-hoc downloads.

Downloaded files live under ``<cache_dir>/artifacts`` in a directory derived
from the coordinate and the exact source URL, so a fixed coordinate always
resolves to the same file. An in-memory index remembers what this process
already resolved; the on-disk store is reused across runs when the
persistent cache is enabled.
"""

import hashlib
import shutil
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional
from urllib.parse import unquote, urlparse

from .cli_config import get_config
from .coordinate import ArtifactCoordinate
from .error_handling import sanitize_authority


@dataclass(frozen=True)
class CacheKey:
    """Cache key: the exact coordinate and the URL it was fetched from."""

    coordinate: ArtifactCoordinate
    url: str

    def __str__(self) -> str:
        """Generate a string representation for use as dict key."""
        return f"{self.coordinate}|{self.url}"

    def to_hash(self) -> str:
        """Generate a hash for use as cache directory name."""
        return hashlib.sha256(str(self).encode()).hexdigest()[:32]

    @property
    def file_name(self) -> str:
        """Last path segment of the URL, falling back to the coordinate layout."""
        segment = unquote(urlparse(self.url).path.rsplit("/", 1)[-1])
        return segment or self.coordinate.file_name


@dataclass
class CacheEntry:
    """A resolved artifact known to this process."""

    key: CacheKey
    path: Path
    created_at: float
    last_accessed: float
    size_bytes: int
    access_count: int = 0

    def touch(self) -> None:
        """Update last access time and increment access count."""
        self.last_accessed = time.time()
        self.access_count += 1

    def age_seconds(self) -> float:
        return time.time() - self.created_at


class CacheStats:
    """Cache performance statistics."""

    def __init__(self):
        self.hits = 0
        self.misses = 0
        self.disk_hits = 0
        self.stores = 0
        self.total_requests = 0
        self._lock = threading.Lock()

    def record_hit(self, from_disk: bool = False) -> None:
        with self._lock:
            self.hits += 1
            self.total_requests += 1
            if from_disk:
                self.disk_hits += 1

    def record_miss(self) -> None:
        with self._lock:
            self.misses += 1
            self.total_requests += 1

    def record_store(self) -> None:
        with self._lock:
            self.stores += 1

    def get_stats(self) -> Dict[str, Any]:
        """Get comprehensive cache statistics."""
        with self._lock:
            hit_rate_percent = 0.0
            if self.total_requests > 0:
                hit_rate_percent = (self.hits / self.total_requests) * 100.0

            return {
                "hits": self.hits,
                "misses": self.misses,
                "disk_hits": self.disk_hits,
                "stores": self.stores,
                "total_requests": self.total_requests,
                "hit_rate_percent": hit_rate_percent,
            }

    def reset(self) -> None:
        with self._lock:
            self.hits = 0
            self.misses = 0
            self.disk_hits = 0
            self.stores = 0
            self.total_requests = 0


class ArtifactCacheManager:
    """
    Thread-safe cache of resolved artifact files.

    Only lookups and bookkeeping take the lock; the download itself happens
    outside of it, in the resolver.
    """

    def __init__(
        self, cache_dir: Optional[Path] = None, persistent: Optional[bool] = None
    ):
        """
        Initialize the cache manager.

        Args:
            cache_dir: Root directory for artifacts (defaults to config)
            persistent: Reuse files left by earlier runs (defaults to config)
        """
        config = get_config()

        self.root = Path(cache_dir) if cache_dir else config.cache.artifacts_dir
        self.persistent = (
            config.cache.enable_persistent_cache if persistent is None else persistent
        )

        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.RLock()
        self._stats = CacheStats()

    def path_for(self, key: CacheKey) -> Path:
        """Where the artifact for ``key`` is stored."""
        group_dir = sanitize_authority(key.coordinate.group).replace(":", "_")
        return self.root / group_dir / key.coordinate.name / key.to_hash() / key.file_name

    def get(self, key: CacheKey, record_miss: bool = True) -> Optional[Path]:
        """
        Look up a resolved artifact.

        Args:
            key: Coordinate and source URL
            record_miss: Count a miss in the stats; off for a lookup that is
                repeated under the download lock

        Returns:
            Path of the cached file, or None when it has to be downloaded
        """
        key_str = str(key)

        with self._lock:
            entry = self._entries.get(key_str)
            if entry is not None and entry.path.is_file():
                entry.touch()
                self._stats.record_hit()
                return entry.path

            if self.persistent:
                path = self.path_for(key)
                if path.is_file():
                    self._remember(key, path)
                    self._stats.record_hit(from_disk=True)
                    return self._entries[key_str].path

            if record_miss:
                self._stats.record_miss()
            return None

    def put(self, key: CacheKey, path: Path) -> Path:
        """Record a freshly downloaded artifact."""
        with self._lock:
            self._stats.record_store()
            return self._remember(key, path).path

    def _remember(self, key: CacheKey, path: Path) -> CacheEntry:
        now = time.time()
        entry = CacheEntry(
            key=key,
            path=path,
            created_at=now,
            last_accessed=now,
            size_bytes=path.stat().st_size,
        )
        self._entries[str(key)] = entry
        return entry

    def size(self) -> int:
        with self._lock:
            return len(self._entries)

    def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics including on-disk usage."""
        stats = self._stats.get_stats()
        files = list(self.iter_disk_files())
        stats.update(
            {
                "current_size": self.size(),
                "persistent": self.persistent,
                "cache_dir": str(self.root),
                "disk_files": len(files),
                "disk_bytes": sum(f.stat().st_size for f in files),
            }
        )
        return stats

    def iter_disk_files(self):
        if not self.root.exists():
            return
        for path in sorted(self.root.rglob("*")):
            if path.is_file() and not path.name.endswith(".part"):
                yield path

    def get_entries_info(self) -> List[Dict[str, Any]]:
        """Information about every artifact stored on disk."""
        entries_info = []
        for path in self.iter_disk_files():
            relative = path.relative_to(self.root)
            entries_info.append(
                {
                    "group": relative.parts[0],
                    "name": relative.parts[1] if len(relative.parts) > 3 else "",
                    "file_name": path.name,
                    "size_bytes": path.stat().st_size,
                    "age_seconds": time.time() - path.stat().st_mtime,
                    "path": str(path),
                }
            )
        entries_info.sort(key=lambda x: x["age_seconds"])
        return entries_info

    def clear(self) -> int:
        """
        Remove every cached artifact, in memory and on disk.

        Returns:
            Number of files removed
        """
        with self._lock:
            count = len(list(self.iter_disk_files()))
            self._entries.clear()
            if self.root.exists():
                shutil.rmtree(self.root)
            return count


_global_cache_manager: Optional[ArtifactCacheManager] = None


def get_cache_manager() -> ArtifactCacheManager:
    """Get the global cache manager instance."""
    global _global_cache_manager

    if _global_cache_manager is None:
        _global_cache_manager = ArtifactCacheManager()

    return _global_cache_manager


def reset_cache_manager() -> None:
    """Reset the global cache manager (useful for testing)."""
    global _global_cache_manager
    _global_cache_manager = None
