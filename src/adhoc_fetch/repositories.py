"""
Repository registry with exclusive-content filtering.

The registry is the project-wide, ordered list of artifact sources consulted
during resolution. It is mutated only while the build is being configured;
``seal()`` marks the end of that phase and any later registration is a
configuration error.

A repository wrapped in an exclusive-content boundary is the only kind of
source considered for the groups it claims, and it is never consulted for
any other group. Repositories without a boundary serve every group that no
boundary claims.
"""

import threading
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple
from urllib.parse import urlparse

from .coordinate import AD_HOC_PATTERN, MAVEN_PATTERN, ArtifactCoordinate, render_pattern
from .error_handling import BuildConfigurationError, sanitize_authority, sanitize_url
from .structured_logging import log_repository_registered

SUPPORTED_SCHEMES = ("http", "https")


def authority_of(uri: str) -> str:
    """
    Return the authority component of an HTTP(S) URI.

    Raises:
        BuildConfigurationError: If the URI is not an absolute HTTP(S) URI
    """
    parsed = urlparse(uri)
    if parsed.scheme.lower() not in SUPPORTED_SCHEMES:
        raise BuildConfigurationError(
            f"download URI {sanitize_url(uri)!r} must use one of: {', '.join(SUPPORTED_SCHEMES)}"
        )
    if not parsed.netloc:
        raise BuildConfigurationError(f"download URI {sanitize_url(uri)!r} has no authority")
    return parsed.netloc


@dataclass(frozen=True)
class PatternRepository:
    """A repository whose artifact URLs follow a pattern layout."""

    base_uri: str
    pattern: str = AD_HOC_PATTERN
    allow_insecure_protocol: bool = False
    metadata_sources: Tuple[str, ...] = ("artifact",)
    group_as_path: bool = False
    name: Optional[str] = None

    def __post_init__(self):
        parsed = urlparse(self.base_uri)
        authority_of(self.base_uri)
        if parsed.scheme.lower() == "http" and not self.allow_insecure_protocol:
            raise BuildConfigurationError(
                f"repository {sanitize_url(self.base_uri)!r} uses plain http; "
                "set allow_insecure_protocol to use it"
            )
        if not self.pattern.startswith("/"):
            raise BuildConfigurationError(f"pattern layout {self.pattern!r} must start with '/'")

    @property
    def authority(self) -> str:
        return authority_of(self.base_uri)

    def artifact_url(self, coordinate: ArtifactCoordinate) -> str:
        """The single URL this repository offers for a coordinate."""
        path = render_pattern(self.pattern, coordinate, group_as_path=self.group_as_path)
        return self.base_uri.rstrip("/") + path

    def __str__(self) -> str:
        label = self.name or "repository"
        return f"{label} {sanitize_url(self.base_uri)}{self.pattern}"


def ad_hoc_source(uri: str) -> PatternRepository:
    """Create the isolated source used for one ad-hoc download."""
    return PatternRepository(
        base_uri=uri,
        pattern=AD_HOC_PATTERN,
        allow_insecure_protocol=True,
        metadata_sources=("artifact",),
        name="ad-hoc",
    )


def maven_repository(uri: str, name: str = "maven") -> PatternRepository:
    """Create a managed repository with the standard Maven layout."""
    return PatternRepository(
        base_uri=uri, pattern=MAVEN_PATTERN, group_as_path=True, name=name
    )


class RepositoryRegistry:
    """Ordered list of repositories plus the exclusive-content boundaries."""

    def __init__(self):
        self._repositories: List[PatternRepository] = []
        self._exclusive: Dict[str, List[PatternRepository]] = {}
        self._sealed = False
        self._lock = threading.Lock()

    @property
    def sealed(self) -> bool:
        return self._sealed

    def seal(self) -> None:
        """End the configuration phase; the registry becomes read-only."""
        self._sealed = True

    def _check_open(self, what: str) -> None:
        if self._sealed:
            raise BuildConfigurationError(
                f"cannot register {what} after build configuration has finished"
            )

    def register_repository(self, repository: PatternRepository) -> PatternRepository:
        """Append a repository to the ordered search list (once)."""
        with self._lock:
            self._check_open(str(repository))
            if repository not in self._repositories:
                self._repositories.append(repository)
        log_repository_registered(sanitize_url(repository.base_uri), repository.pattern)
        return repository

    def exclusive_content(self, repository: PatternRepository, include_group: str) -> None:
        """
        Restrict ``include_group`` to ``repository`` (and any other repository
        already claiming the same group), and restrict ``repository`` to the
        groups it claims.
        """
        with self._lock:
            self._check_open(str(repository))
            if repository not in self._repositories:
                self._repositories.append(repository)
            sources = self._exclusive.setdefault(include_group, [])
            if repository not in sources:
                sources.append(repository)
        log_repository_registered(
            sanitize_url(repository.base_uri),
            repository.pattern,
            exclusive_group=sanitize_authority(include_group),
        )

    def _is_exclusive(self, repository: PatternRepository) -> bool:
        return any(repository in sources for sources in self._exclusive.values())

    def repositories_for(self, group: str) -> List[PatternRepository]:
        """Repositories that may be consulted for ``group``, in search order."""
        with self._lock:
            if group in self._exclusive:
                return list(self._exclusive[group])
            return [repo for repo in self._repositories if not self._is_exclusive(repo)]

    def exclusive_groups(self) -> Dict[str, List[PatternRepository]]:
        with self._lock:
            return {group: list(sources) for group, sources in self._exclusive.items()}

    def __iter__(self):
        with self._lock:
            return iter(list(self._repositories))

    def __len__(self) -> int:
        with self._lock:
            return len(self._repositories)
