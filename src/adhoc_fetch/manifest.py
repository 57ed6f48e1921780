"""
Download manifests.

A manifest is a JSON, YAML or TOML file with a ``downloads`` table. Each
entry names one ad-hoc download and, optionally, how to unpack it::

    downloads:
      kawa:
        uri: https://ftp.gnu.org/pub/gnu/kawa
        name: kawa
        version: "3.0"
        ext: zip
        extract:
          include: ["kawa-*/lib/kawa.jar"]
          flatten: true
"""

import json
from concurrent.futures import FIRST_EXCEPTION, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

import toml
import yaml

from .archives import copy_to
from .detached import DetachedDependency
from .error_handling import BuildConfigurationError, ErrorCategory, get_error_handler
from .project import Project
from .tasks import Task, TaskProvider

DOWNLOAD_KEYS = {"uri", "name", "version", "classifier", "ext", "extract"}
EXTRACT_KEYS = {"include", "exclude", "strip_components", "flatten", "include_empty_dirs", "rename"}


@dataclass
class ExtractSpec:
    """How to unpack a downloaded archive."""

    include: List[str] = field(default_factory=list)
    exclude: List[str] = field(default_factory=list)
    strip_components: int = 0
    flatten: bool = False
    include_empty_dirs: bool = False
    rename: Optional[str] = None


@dataclass
class DownloadDeclaration:
    """One named entry of a manifest."""

    key: str
    uri: str
    name: str
    ext: str
    version: Optional[str] = None
    classifier: Optional[str] = None
    extract: Optional[ExtractSpec] = None


class DownloadTask(Task):
    """Fetches one declared download and places it in the output directory."""

    def __init__(self, name: str):
        super().__init__(name)
        self.declaration: Optional[DownloadDeclaration] = None
        self.dependency: Optional[DetachedDependency] = None
        self.destination: Optional[Path] = None
        self.outputs: List[Path] = []

    def execute(self) -> None:
        declaration = self.declaration
        if declaration.extract is None:
            self.outputs = [copy_to(self.dependency.resolve, self.destination)]
        else:
            spec = declaration.extract
            rename = (lambda _: spec.rename) if spec.rename else None
            self.outputs = self.dependency.tree().extract(
                self.destination,
                include=spec.include,
                exclude=spec.exclude,
                strip_components=spec.strip_components,
                flatten=spec.flatten,
                include_empty_dirs=spec.include_empty_dirs,
                rename=rename,
            )
        super().execute()


def _read_manifest(path: Path) -> Any:
    suffix = path.suffix.lower()
    with open(path, encoding="utf-8") as f:
        if suffix in (".yaml", ".yml"):
            return yaml.safe_load(f)
        elif suffix == ".toml":
            return toml.load(f)
        elif suffix == ".json":
            return json.load(f)
    raise BuildConfigurationError(f"unsupported manifest type: {path.suffix or path.name}")


def _optional_str(entry: Dict[str, Any], key: str, where: str) -> Optional[str]:
    value = entry.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (str, int, float)):
        raise BuildConfigurationError(f"{where}: {key} must be a string")
    return str(value)


def _parse_extract(raw: Any, where: str) -> ExtractSpec:
    if raw is True:
        return ExtractSpec()
    if not isinstance(raw, dict):
        raise BuildConfigurationError(f"{where}: extract must be a table or true")
    unknown = set(raw) - EXTRACT_KEYS
    if unknown:
        raise BuildConfigurationError(f"{where}: unknown extract keys {sorted(unknown)}")

    patterns = {}
    for key in ("include", "exclude"):
        value = raw.get(key, [])
        if isinstance(value, str):
            value = [value]
        if not isinstance(value, list) or not all(isinstance(p, str) for p in value):
            raise BuildConfigurationError(f"{where}: extract.{key} must be a list of patterns")
        patterns[key] = value

    strip = raw.get("strip_components", 0)
    if isinstance(strip, bool) or not isinstance(strip, int) or strip < 0:
        raise BuildConfigurationError(f"{where}: extract.strip_components must be a non-negative integer")

    rename = _optional_str(raw, "rename", where)
    if rename is not None and (rename in (".", "..") or "/" in rename or "\\" in rename):
        raise BuildConfigurationError(f"{where}: extract.rename must be a plain file name")

    return ExtractSpec(
        include=patterns["include"],
        exclude=patterns["exclude"],
        strip_components=strip,
        flatten=bool(raw.get("flatten", False)),
        include_empty_dirs=bool(raw.get("include_empty_dirs", False)),
        rename=rename,
    )


def parse_declaration(key: str, entry: Any) -> DownloadDeclaration:
    where = f"downloads.{key}"
    if not isinstance(entry, dict):
        raise BuildConfigurationError(f"{where} must be a table")
    unknown = set(entry) - DOWNLOAD_KEYS
    if unknown:
        raise BuildConfigurationError(f"{where}: unknown keys {sorted(unknown)}")
    for required in ("uri", "name", "ext"):
        if not entry.get(required):
            raise BuildConfigurationError(f"{where}: missing required field {required!r}")

    extract = entry.get("extract")
    return DownloadDeclaration(
        key=key,
        uri=_optional_str(entry, "uri", where),
        name=_optional_str(entry, "name", where),
        ext=_optional_str(entry, "ext", where),
        version=_optional_str(entry, "version", where),
        classifier=_optional_str(entry, "classifier", where),
        extract=_parse_extract(extract, where) if extract not in (None, False) else None,
    )


def load_manifest(path: Union[str, Path]) -> List[DownloadDeclaration]:
    """
    Read and validate a download manifest.

    Args:
        path: Manifest file (``.json``, ``.yaml``, ``.yml`` or ``.toml``)

    Returns:
        List[DownloadDeclaration]: Declarations in file order

    Raises:
        BuildConfigurationError: If the file cannot be read or is malformed
    """
    manifest_path = Path(path)
    try:
        data = _read_manifest(manifest_path)
    except (OSError, ValueError, yaml.YAMLError) as e:
        get_error_handler().error(
            ErrorCategory.CONFIGURATION,
            f"Could not read manifest {manifest_path.name}",
            "manifest",
            "load_manifest",
            exception=e,
        )
        raise BuildConfigurationError(f"could not read manifest {manifest_path}: {e}") from e

    if not isinstance(data, dict) or not isinstance(data.get("downloads"), dict):
        raise BuildConfigurationError(f"{manifest_path}: expected a 'downloads' table")

    return [parse_declaration(str(key), entry) for key, entry in data["downloads"].items()]


def declare_downloads(
    project: Project,
    declarations: Sequence[DownloadDeclaration],
    output_dir: Union[str, Path],
) -> Dict[str, TaskProvider[DownloadTask]]:
    """
    Declare every download on the project and register one task per entry.

    Each task writes into ``<output_dir>/<key>``. Nothing is fetched until the
    tasks execute.
    """
    output = Path(output_dir)
    refs: Dict[str, TaskProvider[DownloadTask]] = {}

    for declaration in declarations:
        dependency = project.ad_hoc_download(
            declaration.uri,
            declaration.name,
            version=declaration.version,
            classifier=declaration.classifier,
            ext=declaration.ext,
        )

        def setup(task: DownloadTask, declaration=declaration, dependency=dependency) -> None:
            task.declaration = declaration
            task.dependency = dependency
            task.destination = output / declaration.key
            task.inputs.add(dependency)

        refs[declaration.key] = project.register(f"download-{declaration.key}", DownloadTask, setup)

    return refs


def run_downloads(
    project: Project, refs: Sequence[TaskProvider[DownloadTask]], jobs: int = 1
) -> List[DownloadTask]:
    """
    Execute download tasks on a bounded thread pool.

    The first failure cancels downloads still in flight and is re-raised.
    """
    project.finish_configuration()
    if jobs <= 1:
        for ref in refs:
            project.execute(ref.name)
        return [ref.get() for ref in refs]

    with ThreadPoolExecutor(max_workers=jobs) as pool:
        futures = [pool.submit(project.execute, ref.name) for ref in refs]
        try:
            done, _ = wait(futures, return_when=FIRST_EXCEPTION)
        except KeyboardInterrupt:
            project.resolver.cancel()
            for pending in futures:
                pending.cancel()
            raise
        for future in done:
            if future.exception() is not None:
                project.resolver.cancel()
                for pending in futures:
                    pending.cancel()
                raise future.exception()
        for future in futures:
            future.result()

    return [ref.get() for ref in refs]
