"""
Artifact resolver for ad-hoc downloads.

Resolves a coordinate against the repositories the registry allows for its
group, downloading the single matching file over plain HTTP(S) GET.
Downloads stream into a temporary file next to the cache entry and are
published with an atomic rename, so an interrupted download never leaves a
partial entry behind.
"""

import os
import tempfile
import threading
import time
from pathlib import Path
from typing import Dict, List, Optional

import httpx
from httpx import HTTPStatusError, RequestError

from .cache_manager import ArtifactCacheManager, CacheKey, get_cache_manager
from .cli_config import get_config
from .coordinate import ArtifactCoordinate
from .error_handling import (
    ArtifactNotFoundError,
    DownloadCancelledError,
    ErrorCategory,
    NetworkResolutionError,
    ResolutionError,
    get_error_handler,
    log_network_error,
    sanitize_authority,
    sanitize_url,
)
from .repositories import RepositoryRegistry
from .structured_logging import (
    log_cache_hit,
    log_download_completed,
    log_download_failed,
    log_download_started,
)


def create_http_client() -> httpx.Client:
    """Build the shared HTTP client from the network configuration."""
    network = get_config().network
    return httpx.Client(
        timeout=httpx.Timeout(
            network.read_timeout,
            connect=network.connect_timeout,
            pool=network.pool_timeout,
        ),
        limits=httpx.Limits(
            max_connections=network.max_connections,
            max_keepalive_connections=network.max_keepalive_connections,
        ),
        headers={"User-Agent": network.user_agent},
        follow_redirects=network.follow_redirects,
    )


class ArtifactResolver:
    """
    Resolves coordinates to local files.

    The client is shared between threads. Each cache key gets its own lock,
    so concurrent resolutions of one coordinate download it once while
    unrelated downloads run in parallel.
    """

    def __init__(
        self,
        registry: RepositoryRegistry,
        cache_manager: Optional[ArtifactCacheManager] = None,
        client: Optional[httpx.Client] = None,
        cancel_event: Optional[threading.Event] = None,
    ):
        self.registry = registry
        self.cache_manager = cache_manager or get_cache_manager()
        self.cancel_event = cancel_event or threading.Event()
        self._client = client
        self._owns_client = client is None
        self._client_lock = threading.Lock()
        self._key_locks: Dict[str, threading.Lock] = {}
        self._key_locks_guard = threading.Lock()
        self._missing: Dict[str, bool] = {}

    @property
    def client(self) -> httpx.Client:
        with self._client_lock:
            if self._client is None:
                self._client = create_http_client()
            return self._client

    def close(self) -> None:
        """Close the HTTP client if this resolver created it."""
        with self._client_lock:
            if self._client is not None and self._owns_client:
                self._client.close()
                self._client = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def cancel(self) -> None:
        """Abandon in-flight downloads at the next chunk boundary."""
        self.cancel_event.set()

    def _lock_for(self, key: CacheKey) -> threading.Lock:
        with self._key_locks_guard:
            return self._key_locks.setdefault(str(key), threading.Lock())

    def resolve(self, coordinate: ArtifactCoordinate) -> Path:
        """
        Resolve a coordinate to a local file, downloading it if needed.

        Args:
            coordinate: The artifact to resolve

        Returns:
            Path: The cached artifact file

        Raises:
            ResolutionError: If no repository serves the coordinate, the
                download fails, or the build is offline and nothing is cached
        """
        repositories = self.registry.repositories_for(coordinate.group)
        if not repositories:
            group = sanitize_authority(coordinate.group)
            raise ResolutionError(
                f"Could not resolve {coordinate}: no repository serves group {group!r}",
                coordinate,
            )

        not_found: List[str] = []
        for repository in repositories:
            url = repository.artifact_url(coordinate)
            key = CacheKey(coordinate, url)

            cached = self.cache_manager.get(key, record_miss=False)
            if cached is not None:
                log_cache_hit(str(coordinate), sanitize_url(url), str(cached))
                return cached

            with self._lock_for(key):
                cached = self.cache_manager.get(key)
                if cached is not None:
                    return cached
                if self._missing.get(str(key)):
                    not_found.append(url)
                    continue

                try:
                    path = self._download(coordinate, url, self.cache_manager.path_for(key))
                except ArtifactNotFoundError:
                    self._missing[str(key)] = True
                    not_found.append(url)
                    continue
                return self.cache_manager.put(key, path)

        raise ArtifactNotFoundError(coordinate, [sanitize_url(url) for url in not_found])

    def _download(self, coordinate: ArtifactCoordinate, url: str, destination: Path) -> Path:
        shown_url = sanitize_url(url)
        if get_config().network.offline:
            raise ResolutionError(
                f"Could not resolve {coordinate}: {shown_url} is not cached and the build is offline",
                coordinate,
                shown_url,
            )

        chunk_size = get_config().network.chunk_size
        destination.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            prefix=f"{destination.name}.", suffix=".part", dir=destination.parent
        )
        tmp_path = Path(tmp_name)
        start_time = time.time()
        log_download_started(str(coordinate), shown_url)

        try:
            with os.fdopen(fd, "wb") as out:
                with self.client.stream("GET", url) as response:
                    if response.status_code == 404:
                        log_download_failed(str(coordinate), shown_url, "HTTP 404")
                        raise ArtifactNotFoundError(coordinate, [shown_url])
                    response.raise_for_status()
                    for chunk in response.iter_bytes(chunk_size):
                        if self.cancel_event.is_set():
                            raise DownloadCancelledError(
                                f"Download of {coordinate} from {shown_url} was cancelled",
                                coordinate,
                                shown_url,
                            )
                        out.write(chunk)
            os.replace(tmp_path, destination)

        except HTTPStatusError as e:
            status = e.response.status_code
            log_network_error(
                f"Download of {coordinate} failed with HTTP {status}",
                "resolver",
                "_download",
                url=url,
                status_code=status,
                exception=e,
            )
            log_download_failed(str(coordinate), shown_url, f"HTTP {status}")
            raise ResolutionError(
                f"Could not resolve {coordinate}: {shown_url} returned HTTP {status}",
                coordinate,
                shown_url,
            ) from e
        except RequestError as e:
            log_network_error(
                f"Download of {coordinate} failed: {type(e).__name__}",
                "resolver",
                "_download",
                url=url,
                exception=e,
            )
            log_download_failed(str(coordinate), shown_url, type(e).__name__)
            raise NetworkResolutionError(
                f"Could not resolve {coordinate}: {type(e).__name__} while fetching {shown_url}",
                coordinate,
                shown_url,
            ) from e
        except OSError as e:
            get_error_handler().error(
                ErrorCategory.FILESYSTEM,
                f"Could not write {destination}",
                "resolver",
                "_download",
                exception=e,
                details={"url": shown_url},
            )
            raise
        finally:
            if tmp_path.exists():
                tmp_path.unlink()

        size = destination.stat().st_size
        log_download_completed(
            str(coordinate), shown_url, size, int((time.time() - start_time) * 1000)
        )
        return destination
