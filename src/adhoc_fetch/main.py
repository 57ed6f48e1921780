import sys
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .archives import copy_to
from .cache_manager import get_cache_manager
from .cli_config import (
    build_config,
    config_to_dict,
    create_sample_config,
    get_config,
    load_config_file,
    validate_config_values,
)
from .error_handling import AdHocFetchError
from .manifest import declare_downloads, load_manifest, run_downloads
from .native import OperatingSystemFamily, current_java_home, locate
from .project import Project
from .structured_logging import configure_logging

__version__ = "1.0.0"

console = Console()


def _fail(message: str) -> None:
    console.print(f"❌ {message}", style="red")
    sys.exit(1)


def _format_size(size_bytes: int) -> str:
    size = float(size_bytes)
    for unit in ("B", "KB", "MB", "GB"):
        if size < 1024 or unit == "GB":
            return f"{size:.0f} {unit}" if unit == "B" else f"{size:.1f} {unit}"
        size /= 1024
    return f"{size_bytes} B"


@click.group(invoke_without_command=True)
@click.option("--version", is_flag=True, help="Show version information")
@click.option("--offline", is_flag=True, help="Only use artifacts already in the cache")
@click.pass_context
def cli(ctx, version, offline):
    """
    📦 adhoc-fetch: cacheable downloads from arbitrary HTTP(S) locations

    Resolves one-off release archives, tools and runtimes like ordinary
    dependencies, and locates the host JVM for native builds.
    """
    if version:
        console.print(f"adhoc-fetch version {__version__}", style="bold blue")
        ctx.exit()

    current_config = get_config()
    if offline:
        current_config.network.offline = True
    configure_logging(
        current_config.logging.log_level,
        current_config.logging.enable_json,
        current_config.logging.log_format,
    )

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())


@cli.command()
@click.argument("uri")
@click.argument("name")
@click.option("--version", "artifact_version", help="Artifact version, rendered as -VERSION")
@click.option("--classifier", help="Artifact classifier, rendered as -CLASSIFIER")
@click.option("--ext", required=True, help="File extension, e.g. tar.gz or jar")
@click.option(
    "--output-dir",
    type=click.Path(file_okay=False),
    help="Also copy the downloaded file into this directory",
)
def fetch(
    uri: str,
    name: str,
    artifact_version: Optional[str],
    classifier: Optional[str],
    ext: str,
    output_dir: Optional[str],
):
    """Download a single artifact into the cache."""
    try:
        with Project(name="fetch") as project:
            dependency = project.ad_hoc_download(
                uri, name, version=artifact_version, classifier=classifier, ext=ext
            )
            path = dependency.resolve()
            if output_dir:
                path = copy_to(path, output_dir)
    except AdHocFetchError as e:
        _fail(str(e))
        return

    console.print(f"✅ {dependency.coordinate}", style="green")
    console.print(str(path))


@cli.command()
@click.argument("manifest", type=click.Path(exists=True, dir_okay=False))
@click.option(
    "--output-dir",
    type=click.Path(file_okay=False),
    default="build/downloads",
    show_default=True,
    help="Directory that receives one subdirectory per download",
)
@click.option("--jobs", "-j", type=int, help="Parallel downloads (default: network.max_parallel_downloads)")
def sync(manifest: str, output_dir: str, jobs: Optional[int]):
    """Fetch and unpack every download declared in a manifest."""
    if jobs is None:
        jobs = get_config().network.max_parallel_downloads
    if jobs <= 0:
        _fail("--jobs must be positive")
        return

    try:
        declarations = load_manifest(manifest)
        with Project(name=Path(manifest).stem) as project:
            refs = declare_downloads(project, declarations, output_dir)
            tasks = run_downloads(project, list(refs.values()), jobs)
    except AdHocFetchError as e:
        _fail(str(e))
        return

    table = Table(title=f"Synced {len(tasks)} downloads")
    table.add_column("Download", style="cyan")
    table.add_column("Coordinate")
    table.add_column("Files", justify="right")
    for task in tasks:
        table.add_row(task.declaration.key, str(task.dependency.coordinate), str(len(task.outputs)))
    console.print(table)


@cli.command()
@click.option(
    "--family",
    type=click.Choice([f.value for f in OperatingSystemFamily], case_sensitive=False),
    help="Target operating system family (default: this host)",
)
@click.option("--java-home", type=click.Path(exists=True, file_okay=False), help="Java installation to inspect")
def jvm(family: Optional[str], java_home: Optional[str]):
    """Show the JNI include directories and JVM library for a target."""
    try:
        target = OperatingSystemFamily.from_name(family) if family else OperatingSystemFamily.current()
        home = Path(java_home) if java_home else current_java_home()
        location = locate(target, home)
    except AdHocFetchError as e:
        _fail(str(e))
        return

    console.print(
        Panel(f"[bold blue]☕ JVM for {target.name}[/bold blue]", border_style="blue")
    )
    console.print(f"  Java Home: {home}")
    console.print(f"  Include Subdir: {location.include_subdir}")
    for include in location.include_dirs(home):
        console.print(f"  Include: {include}")
    console.print(f"  Library: {location.library_path}")


@cli.command()
def info():
    """Show usage examples and configuration sources."""
    info_text = """
[bold blue]🔗 URL Layout:[/bold blue]

  <uri>/<name>[-<version>][-<classifier>].<ext>
  A segment is left out, with its dash, when the field is not given.

[bold blue]📄 Manifest Formats:[/bold blue]

• [green].json[/green], [green].yaml[/green]/[green].yml[/green], [green].toml[/green] with a [cyan]downloads[/cyan] table

[bold blue]🌍 Environment Variables:[/bold blue]

• [cyan]ADHOC_FETCH_CACHE_DIR[/cyan] - Artifact cache directory
• [cyan]ADHOC_FETCH_OFFLINE[/cyan] - Never touch the network
• [cyan]ADHOC_FETCH_CONNECT_TIMEOUT[/cyan] / [cyan]ADHOC_FETCH_READ_TIMEOUT[/cyan] - Network timeouts
• [cyan]ADHOC_FETCH_MAX_PARALLEL_DOWNLOADS[/cyan] - Default for sync --jobs
• [cyan]ADHOC_FETCH_JAVA_HOME[/cyan] - Java installation for native builds
• [cyan]ADHOC_FETCH_LOG_LEVEL[/cyan] - Log level

[bold blue]📄 Configuration Files:[/bold blue]

• [green].adhoc-fetch.json[/green] (or .yaml/.yml/.toml) - Project-level config
• [green]~/.config/adhoc-fetch/config.json[/green] - User-level config

[bold blue]💡 Usage Examples:[/bold blue]

  # Fetch https://example.org/pkg/tool-1.2.tar.gz
  adhoc-fetch fetch https://example.org/pkg tool --version 1.2 --ext tar.gz

  # Fetch and unpack everything a manifest declares
  adhoc-fetch sync downloads.yaml --output-dir build/downloads --jobs 4

  # Where is libjvm for a Linux target?
  adhoc-fetch jvm --family linux
"""
    console.print(
        Panel(
            info_text,
            title="[bold]adhoc-fetch Information[/bold]",
            border_style="blue",
        )
    )


@cli.group()
def config():
    """Configuration management commands."""
    pass


@config.command("init")
@click.option(
    "--path",
    type=click.Path(),
    default=".adhoc-fetch.json",
    help="Path where to create the config file",
    show_default=True,
)
@click.option("--force", is_flag=True, help="Overwrite existing config file")
def config_init(path: str, force: bool):
    """Create a sample configuration file."""
    config_path = Path(path)

    if config_path.exists() and not force:
        console.print(f"⚠️  Config file already exists at {config_path}", style="yellow")
        console.print("Use --force to overwrite", style="dim")
        return

    try:
        with open(config_path, "w", encoding="utf-8") as f:
            f.write(create_sample_config())
    except OSError as e:
        _fail(f"Failed to create config file: {e}")
        return

    console.print(f"✅ Created configuration file at {config_path}", style="green")
    console.print("Edit this file to customize your settings", style="dim")


@config.command("show")
def config_show():
    """Show the effective configuration."""
    current = config_to_dict(get_config())

    console.print(
        Panel("[bold blue]🔧 Effective Configuration[/bold blue]", border_style="blue")
    )
    for section, values in current.items():
        console.print(f"\n[bold cyan]{section.title()} Settings:[/bold cyan]")
        for key, value in values.items():
            console.print(f"  {key}: {value}")


@config.command("validate")
@click.argument("config_file", type=click.Path(exists=True))
def config_validate(config_file: str):
    """Validate a configuration file."""
    config_data = load_config_file(Path(config_file))

    if config_data is None:
        _fail(f"Could not load config from {config_file}")
        return

    errors = validate_config_values(build_config(config_data, strict=True))
    if errors:
        console.print(f"❌ Configuration file {config_file} is invalid:", style="red")
        for error in errors:
            console.print(f"  • {error}", style="red")
        sys.exit(1)

    console.print(f"✅ Configuration file {config_file} is valid", style="green")


@cli.group()
def cache():
    """Cache management commands."""
    pass


@cache.command("stats")
def cache_stats():
    """Show artifact cache statistics."""
    stats = get_cache_manager().get_stats()

    console.print(
        Panel("[bold blue]📊 Artifact Cache Statistics[/bold blue]", border_style="blue")
    )
    console.print(f"  Directory: {stats['cache_dir']}")
    console.print(f"  Persistent: {'✅ Yes' if stats['persistent'] else '❌ No'}")
    console.print(f"  Files on Disk: {stats['disk_files']}")
    console.print(f"  Disk Usage: {_format_size(stats['disk_bytes'])}")


@cache.command("entries")
@click.option("--limit", default=20, help="Maximum number of entries to show", type=int)
@click.option(
    "--sort-by",
    type=click.Choice(["age", "size", "name"], case_sensitive=False),
    default="age",
    help="Sort entries by field",
)
def cache_entries(limit: int, sort_by: str):
    """List cached artifacts."""
    entries = get_cache_manager().get_entries_info()

    if not entries:
        console.print("📭 Cache is empty", style="yellow")
        return

    if sort_by == "size":
        entries.sort(key=lambda x: x["size_bytes"], reverse=True)
    elif sort_by == "name":
        entries.sort(key=lambda x: (x["group"], x["file_name"]))
    # age is already the default sort

    total = len(entries)
    entries = entries[:limit]

    table = Table(title=f"Cached artifacts (showing {len(entries)} of {total})")
    table.add_column("Group", style="cyan")
    table.add_column("File")
    table.add_column("Size", justify="right")
    table.add_column("Age", justify="right")
    for entry in entries:
        table.add_row(
            entry["group"],
            entry["file_name"],
            _format_size(entry["size_bytes"]),
            f"{entry['age_seconds'] // 60:.0f}m",
        )
    console.print(table)


@cache.command("clear")
@click.option("--confirm", is_flag=True, help="Skip confirmation prompt")
def cache_clear(confirm: bool):
    """Remove every cached artifact."""
    cache_manager = get_cache_manager()
    file_count = len(list(cache_manager.iter_disk_files()))

    if file_count == 0:
        console.print("📭 Cache is already empty", style="yellow")
        return

    if not confirm:
        if not click.confirm(f"Are you sure you want to remove {file_count} cached artifacts?"):
            console.print("❌ Cache clear cancelled")
            return

    cleared_count = cache_manager.clear()
    console.print(f"✅ Removed {cleared_count} cached artifacts", style="green")


if __name__ == "__main__":
    cli()
