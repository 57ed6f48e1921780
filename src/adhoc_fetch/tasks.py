"""
Minimal task model: lazy references, tasks and file collections.

``Provider`` is an eager-only reference: all it offers is ``get()``.
``TaskProvider`` adds a deferred ``configure()`` that queues actions until
the task is realized, which is how task configuration avoidance works.
Some native-binary APIs only hand out a plain ``Provider`` of a task; the
module-level ``configure()`` bridges the gap for those.
"""

import threading
from pathlib import Path
from typing import Any, Callable, Dict, Generic, Iterator, List, Optional, TypeVar

from .error_handling import BuildConfigurationError

T = TypeVar("T")
U = TypeVar("U")


class Provider(Generic[T]):
    """A value computed on first ``get()`` and memoized."""

    def __init__(self, factory: Callable[[], T]):
        self._factory = factory
        self._value: Optional[T] = None
        self._realized = False
        self._lock = threading.RLock()

    @property
    def realized(self) -> bool:
        return self._realized

    def get(self) -> T:
        with self._lock:
            if not self._realized:
                self._value = self._factory()
                self._realized = True
            return self._value

    def map(self, transform: Callable[[T], U]) -> "Provider[U]":
        return Provider(lambda: transform(self.get()))


class Task:
    """A unit of work with inputs, dependencies and actions."""

    def __init__(self, name: str):
        self.name = name
        self.inputs = FileCollection()
        self.dependencies: List["TaskProvider[Any]"] = []
        self.actions: List[Callable[["Task"], None]] = []
        self.executed = False

    def configure(self, action: Callable[[Any], None]) -> "Task":
        """Apply a configuration action to this task right away."""
        action(self)
        return self

    def depends_on(self, *tasks: "TaskProvider[Any]") -> None:
        self.dependencies.extend(tasks)

    def do_last(self, action: Callable[["Task"], None]) -> None:
        self.actions.append(action)

    def execute(self) -> None:
        for action in self.actions:
            action(self)
        self.executed = True

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name!r})"


class TaskProvider(Provider[T]):
    """
    Lazy task reference.

    ``configure()`` on an unrealized task only queues the action; the queue
    runs once, when the task is first realized.
    """

    def __init__(self, name: str, factory: Callable[[], T]):
        super().__init__(self._create)
        self.name = name
        self._task_factory = factory
        self._pending: List[Callable[[T], None]] = []

    def _create(self) -> T:
        task = self._task_factory()
        # Actions may queue further actions on this provider while it realizes
        while self._pending:
            self._pending.pop(0)(task)
        return task

    def configure(self, action: Callable[[T], None]) -> None:
        with self._lock:
            if self._realized:
                action(self._value)
            else:
                self._pending.append(action)


def configure(task_ref: Provider[T], action: Callable[[T], None]) -> T:
    """
    Configure the task behind an eager-only reference.

    Realizes the task (at most once, whatever the reference type) and runs
    ``action`` on it exactly once, synchronously, before returning. Use it
    where an API hands out a plain ``Provider`` with no deferred
    ``configure``; prefer ``TaskProvider.configure`` where one exists.

    Returns:
        The configured task
    """
    task = task_ref.get()
    action(task)
    return task


class TaskContainer:
    """Named tasks registered lazily."""

    def __init__(self):
        self._providers: Dict[str, TaskProvider[Any]] = {}
        self._lock = threading.Lock()

    def register(
        self,
        name: str,
        task_type: Callable[[str], T] = Task,
        configuration: Optional[Callable[[T], None]] = None,
    ) -> TaskProvider[T]:
        with self._lock:
            if name in self._providers:
                raise BuildConfigurationError(f"task {name!r} is already registered")
            provider: TaskProvider[T] = TaskProvider(name, lambda: task_type(name))
            self._providers[name] = provider
        if configuration is not None:
            provider.configure(configuration)
        return provider

    def named(self, name: str) -> TaskProvider[Any]:
        with self._lock:
            if name not in self._providers:
                raise BuildConfigurationError(f"no task named {name!r}")
            return self._providers[name]

    def names(self) -> List[str]:
        with self._lock:
            return list(self._providers)

    def realized_names(self) -> List[str]:
        with self._lock:
            return [name for name, p in self._providers.items() if p.realized]

    def __contains__(self, name: str) -> bool:
        with self._lock:
            return name in self._providers


class FileCollection:
    """
    Ordered, de-duplicated set of files built from lazy sources.

    A source can be a path, a string, a callable returning paths, another
    collection, or any iterable of paths such as a detached dependency.
    Sources are only evaluated when the files are requested.
    """

    def __init__(self, *sources: Any):
        self._sources: List[Any] = list(sources)

    def add(self, *sources: Any) -> "FileCollection":
        self._sources.extend(sources)
        return self

    def _expand(self, source: Any) -> Iterator[Path]:
        if isinstance(source, (str, Path)):
            yield Path(source)
        elif callable(source) and not isinstance(source, FileCollection):
            yield from self._expand_all(source())
        else:
            yield from self._expand_all(source)

    def _expand_all(self, value: Any) -> Iterator[Path]:
        if isinstance(value, (str, Path)):
            yield Path(value)
            return
        for item in value:
            yield from self._expand(item)

    @property
    def files(self) -> List[Path]:
        seen = set()
        result = []
        for source in self._sources:
            for path in self._expand(source):
                if path not in seen:
                    seen.add(path)
                    result.append(path)
        return result

    @property
    def single_file(self) -> Path:
        files = self.files
        if len(files) != 1:
            raise BuildConfigurationError(f"expected exactly one file but found {len(files)}")
        return files[0]

    def __iter__(self) -> Iterator[Path]:
        return iter(self.files)

    def __len__(self) -> int:
        return len(self.files)
