"""Detached dependency: a standalone, lazily resolved artifact reference."""

import threading
from pathlib import Path
from typing import Callable, Iterator, List, Optional

from .archives import ArchiveTree
from .coordinate import ArtifactCoordinate
from .error_handling import ResolutionError
from .resolver import ArtifactResolver


class DetachedDependency:
    """
    One artifact coordinate, resolved on first access.

    The reference belongs to no named configuration, so nothing else in the
    build can pull it in transitively. Reading ``files`` (or iterating,
    ``resolve()``, ``single_file``) blocks until the artifact is downloaded;
    later reads reuse the result.
    """

    def __init__(
        self,
        coordinate: ArtifactCoordinate,
        resolver: ArtifactResolver,
        before_resolve: Optional[Callable[[], None]] = None,
    ):
        self.coordinate = coordinate
        self._resolver = resolver
        self._before_resolve = before_resolve
        self._files: Optional[List[Path]] = None
        self._lock = threading.Lock()

    @property
    def resolved(self) -> bool:
        return self._files is not None

    def resolve_all(self) -> List[Path]:
        """Resolve and return the full file set."""
        with self._lock:
            if self._files is None:
                if self._before_resolve is not None:
                    self._before_resolve()
                self._files = [self._resolver.resolve(self.coordinate)]
            return list(self._files)

    def resolve(self) -> Path:
        """Resolve and return the single file this dependency stands for."""
        files = self.resolve_all()
        if len(files) != 1:
            raise ResolutionError(
                f"expected exactly one file for {self.coordinate} but found {len(files)}",
                self.coordinate,
            )
        return files[0]

    @property
    def files(self) -> List[Path]:
        return self.resolve_all()

    @property
    def single_file(self) -> Path:
        return self.resolve()

    def tree(self) -> ArchiveTree:
        """Lazy archive view over the resolved file; nothing is fetched yet."""
        return ArchiveTree(self.resolve)

    def __iter__(self) -> Iterator[Path]:
        return iter(self.resolve_all())

    def __repr__(self) -> str:
        state = "resolved" if self.resolved else "unresolved"
        return f"DetachedDependency({self.coordinate}, {state})"
