"""
Build project: the configuration-phase container for repositories and tasks.

A ``Project`` has two phases. During configuration, modules declare
downloads and tasks; the repository list may change. The first resolution
or ``execute()`` call ends configuration and seals the repository list, after
which tasks run in dependency order.
"""

from pathlib import Path
from typing import Any, Callable, List, Optional, Set, Union

import httpx

from .cache_manager import ArtifactCacheManager
from .detached import DetachedDependency
from .download import ad_hoc_download
from .error_handling import BuildConfigurationError
from .native import CompileTask, LinkTask, NativeBinary, OperatingSystemFamily
from .repositories import RepositoryRegistry
from .resolver import ArtifactResolver
from .structured_logging import set_build_context
from .tasks import Provider, Task, TaskContainer, TaskProvider


class Project:
    """Owns the repository registry, resolver and tasks of one build."""

    def __init__(
        self,
        name: str = "root",
        build_dir: Optional[Union[str, Path]] = None,
        cache_manager: Optional[ArtifactCacheManager] = None,
        client: Optional[httpx.Client] = None,
    ):
        self.name = name
        self.build_dir = Path(build_dir) if build_dir is not None else Path.cwd() / "build"
        self.repositories = RepositoryRegistry()
        self.resolver = ArtifactResolver(self.repositories, cache_manager, client)
        self.tasks = TaskContainer()
        set_build_context(name)

    @property
    def configured(self) -> bool:
        return self.repositories.sealed

    def ad_hoc_download(
        self,
        uri: str,
        name: str,
        version: Optional[str] = None,
        classifier: Optional[str] = None,
        ext: str = "",
    ) -> DetachedDependency:
        return ad_hoc_download(self, uri, name, version, classifier, ext)

    def finish_configuration(self) -> None:
        """End the configuration phase; the repository list is frozen from here on."""
        self.repositories.seal()

    def register(
        self,
        name: str,
        task_type: Callable[[str], Any] = Task,
        configuration: Optional[Callable[[Any], None]] = None,
    ) -> TaskProvider[Any]:
        return self.tasks.register(name, task_type, configuration)

    def native_binary(
        self, name: str, family: Union[str, OperatingSystemFamily]
    ) -> NativeBinary:
        """
        Declare a native binary with a compile and a link task.

        The binary only exposes eager ``Provider`` references to its tasks;
        use ``tasks.configure`` to configure them.
        """
        target = OperatingSystemFamily.from_name(family)
        suffix = name[:1].upper() + name[1:]

        compile_ref = self.tasks.register(f"compile{suffix}", CompileTask)
        link_ref = self.tasks.register(
            f"link{suffix}", lambda task_name: LinkTask(task_name, target)
        )
        binary = NativeBinary(
            name, target, Provider(compile_ref.get), Provider(link_ref.get)
        )

        def wire_link(task: LinkTask) -> None:
            task.libs.add(binary.link_libraries)
            task.depends_on(compile_ref)

        link_ref.configure(wire_link)
        return binary

    def execute(self, *names: str) -> List[str]:
        """
        Run the named tasks (all tasks when none are named) and their
        dependencies, each at most once, dependencies first.

        Returns:
            List[str]: Names of the tasks that ran, in execution order

        Raises:
            BuildConfigurationError: On unknown task names or dependency cycles
        """
        self.finish_configuration()

        executed: List[str] = []
        visiting: Set[str] = set()
        done: Set[str] = set()

        def run(ref: TaskProvider[Any]) -> None:
            if ref.name in done:
                return
            if ref.name in visiting:
                raise BuildConfigurationError(f"task dependency cycle through {ref.name!r}")
            visiting.add(ref.name)
            task = ref.get()
            for dependency in task.dependencies:
                run(dependency)
            visiting.discard(ref.name)
            if not task.executed:
                task.execute()
                executed.append(ref.name)
            done.add(ref.name)

        for name in names or tuple(self.tasks.names()):
            run(self.tasks.named(name))
        return executed

    def close(self) -> None:
        self.resolver.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def __repr__(self) -> str:
        return f"Project({self.name!r})"
