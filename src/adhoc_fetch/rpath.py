"""Runtime search paths (rpaths) for native link tasks."""

from pathlib import Path
from typing import Iterable, List

from .native import LinkTask, OperatingSystemFamily
from .structured_logging import log_rpaths_injected
from .tasks import Provider, configure

RPATH_FLAG = "-Wl,-rpath,"


def rpath_arguments(libs: Iterable[Path]) -> List[str]:
    """One ``-Wl,-rpath,<dir>`` per distinct library directory, in first-seen order."""
    seen = set()
    args = []
    for lib in libs:
        directory = Path(lib).parent
        if directory not in seen:
            seen.add(directory)
            args.append(f"{RPATH_FLAG}{directory}")
    return args


def add_rpaths(link_task_ref: Provider[LinkTask]) -> LinkTask:
    """
    Embed runtime search paths for every library the link task consumes.

    The arguments are computed when the linker arguments are resolved, so
    libraries added after this call are still covered. Windows targets are
    left untouched.
    """

    def inject(task: LinkTask) -> None:
        if task.target_family is OperatingSystemFamily.WINDOWS:
            return

        def arguments() -> List[str]:
            args = rpath_arguments(task.libs)
            log_rpaths_injected(task.name, args)
            return args

        task.linker_args.append(arguments)

    return configure(link_task_ref, inject)
