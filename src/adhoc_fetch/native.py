"""
Native toolchain locator.

Finds the JNI include directory and the JVM runtime library inside a Java
installation for a target operating system family, and wires them into a
native binary's compile and link tasks.
"""

import os
import shutil
import sys
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Union

from .cli_config import get_config
from .error_handling import (
    BuildConfigurationError,
    ErrorCategory,
    MissingNativeLibraryError,
    UnrecognizedPlatformError,
    get_error_handler,
)
from .structured_logging import log_native_library_located
from .tasks import FileCollection, Provider, Task, configure


class OperatingSystemFamily(Enum):
    """Operating system families a native binary can target."""

    LINUX = "linux"
    MACOS = "macos"
    WINDOWS = "windows"

    @classmethod
    def from_name(cls, name: Union[str, "OperatingSystemFamily"]) -> "OperatingSystemFamily":
        if isinstance(name, cls):
            return name
        normalized = str(name).strip().lower()
        family = _FAMILY_ALIASES.get(normalized)
        if family is None:
            raise UnrecognizedPlatformError(name)
        return family

    @classmethod
    def current(cls) -> "OperatingSystemFamily":
        """Family of the host running the build."""
        if sys.platform.startswith("win"):
            return cls.WINDOWS
        if sys.platform == "darwin":
            return cls.MACOS
        if sys.platform.startswith("linux"):
            return cls.LINUX
        raise UnrecognizedPlatformError(sys.platform)


_FAMILY_ALIASES = {
    "linux": OperatingSystemFamily.LINUX,
    "macos": OperatingSystemFamily.MACOS,
    "osx": OperatingSystemFamily.MACOS,
    "mac os x": OperatingSystemFamily.MACOS,
    "darwin": OperatingSystemFamily.MACOS,
    "windows": OperatingSystemFamily.WINDOWS,
    "win32": OperatingSystemFamily.WINDOWS,
}

LINUX_LIBRARY_DIRS = ("jre/lib/amd64/server", "lib/amd64/server", "lib/server")
MACOS_LIBRARY_DIRS = ("jre/lib/server", "lib/server")
WINDOWS_LIBRARY = "lib/jvm.lib"


@dataclass(frozen=True)
class NativeLibraryLocation:
    """Where the JVM headers and runtime library live for one target family."""

    operating_system_family: OperatingSystemFamily
    include_subdir: str
    library_path: Path

    def include_dirs(self, java_home: Path) -> List[Path]:
        include = Path(java_home) / "include"
        return [include, include / self.include_subdir]


def find_jvm_library(
    java_home: Path,
    family: OperatingSystemFamily,
    extension: str,
    subdirs: Sequence[str],
) -> Path:
    """First ``<subdir>/libjvm.<extension>`` that exists, in search order."""
    candidates = [Path(java_home) / subdir / f"libjvm.{extension}" for subdir in subdirs]
    for candidate in candidates:
        if candidate.exists():
            return candidate
    raise MissingNativeLibraryError(family.name, java_home, candidates)


def locate(
    target_family: Union[str, OperatingSystemFamily], java_home: Union[str, Path]
) -> NativeLibraryLocation:
    """
    Resolve the JNI include subdirectory and JVM library for a target family.

    Args:
        target_family: LINUX, MACOS or WINDOWS (enum member or name)
        java_home: Root of the Java installation

    Returns:
        NativeLibraryLocation: Include subdirectory and library file

    Raises:
        UnrecognizedPlatformError: If the family is not one of the three
        MissingNativeLibraryError: If no candidate library file exists
    """
    family = OperatingSystemFamily.from_name(target_family)
    home = Path(java_home)

    if family is OperatingSystemFamily.LINUX:
        subdir = "linux"
        library = find_jvm_library(home, family, "so", LINUX_LIBRARY_DIRS)
    elif family is OperatingSystemFamily.MACOS:
        subdir = "darwin"
        library = find_jvm_library(home, family, "dylib", MACOS_LIBRARY_DIRS)
    elif family is OperatingSystemFamily.WINDOWS:
        subdir = "win32"
        library = home / WINDOWS_LIBRARY
    else:
        raise UnrecognizedPlatformError(target_family)

    return NativeLibraryLocation(family, subdir, library)


def current_java_home() -> Path:
    """
    Java installation used for native builds.

    Checks the configured ``native.java_home``, then ``JAVA_HOME``, then the
    installation containing the ``java`` executable on ``PATH``.
    """
    configured = get_config().native.java_home or os.environ.get("JAVA_HOME")
    if configured:
        return Path(configured).expanduser()

    java = shutil.which("java")
    if java:
        # <home>/bin/java
        return Path(java).resolve().parent.parent

    raise BuildConfigurationError(
        "no Java installation found: set JAVA_HOME or native.java_home"
    )


class CompileTask(Task):
    """Compiles native sources against an ordered include path."""

    def __init__(self, name: str):
        super().__init__(name)
        self.includes = FileCollection()

    def include(self, *dirs) -> None:
        self.includes.add(*dirs)


LinkerArg = Union[str, Callable[[], Sequence[str]]]


class LinkTask(Task):
    """
    Links a native binary.

    ``linker_args`` holds plain strings and callables; callables are only
    evaluated by ``resolved_linker_args()``, once the library set is final.
    """

    def __init__(self, name: str, target_family: OperatingSystemFamily = OperatingSystemFamily.LINUX):
        super().__init__(name)
        self.target_family = target_family
        self.libs = FileCollection()
        self.linker_args: List[LinkerArg] = []

    def resolved_linker_args(self) -> List[str]:
        args: List[str] = []
        for arg in self.linker_args:
            if callable(arg):
                args.extend(arg())
            else:
                args.append(arg)
        return args


class NativeBinary:
    """A native compile and link unit for one target family."""

    def __init__(
        self,
        name: str,
        target_family: OperatingSystemFamily,
        compile_task: Provider[CompileTask],
        link_task: Provider[LinkTask],
    ):
        self.name = name
        self.target_family = target_family
        self.compile_task = compile_task
        self.link_task = link_task
        self.link_libraries = FileCollection()

    def __repr__(self) -> str:
        return f"NativeBinary({self.name!r}, {self.target_family.name})"


def add_jvm_library(
    binary: NativeBinary, java_home: Optional[Union[str, Path]] = None
) -> NativeLibraryLocation:
    """
    Compile and link a native binary against the host JVM.

    Adds ``<java_home>/include`` and ``<java_home>/include/<subdir>`` to the
    compile task's include path and the JVM library to the binary's link
    libraries. Calling it again adds nothing new.
    """
    home = Path(java_home) if java_home is not None else current_java_home()
    try:
        location = locate(binary.target_family, home)
    except BuildConfigurationError as e:
        get_error_handler().error(
            ErrorCategory.NATIVE_TOOLCHAIN,
            f"Could not locate the JVM library for {binary.name}",
            "native",
            "add_jvm_library",
            exception=e,
            details={"family": binary.target_family.name, "java_home": str(home)},
        )
        raise

    configure(binary.compile_task, lambda task: task.include(*location.include_dirs(home)))
    binary.link_libraries.add(location.library_path)

    log_native_library_located(
        location.operating_system_family.name,
        location.include_subdir,
        str(location.library_path),
    )
    return location
