"""
Configuration management for adhoc-fetch.

Provides configurable settings for downloads (timeouts, connection limits,
offline mode), the artifact cache, the native toolchain and logging.
"""

import json
import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import toml
import yaml
from rich.console import Console

console = Console(stderr=True)


@dataclass
class NetworkConfig:
    """Network settings for artifact downloads."""

    user_agent: str = "adhoc-fetch/1.0.0"
    connect_timeout: float = 10.0
    read_timeout: float = 60.0
    pool_timeout: float = 5.0
    max_connections: int = 20
    max_keepalive_connections: int = 10
    follow_redirects: bool = True
    chunk_size: int = 64 * 1024
    max_parallel_downloads: int = 4
    offline: bool = False


@dataclass
class CacheConfig:
    """Artifact cache configuration."""

    cache_dir: str = field(
        default_factory=lambda: str(Path.home() / ".cache" / "adhoc-fetch")
    )
    enable_persistent_cache: bool = True

    @property
    def artifacts_dir(self) -> Path:
        """Directory holding downloaded artifact files."""
        return Path(self.cache_dir).expanduser() / "artifacts"


@dataclass
class NativeConfig:
    """Native toolchain configuration."""

    java_home: Optional[str] = None


@dataclass
class LoggingConfig:
    """Logging and error handling configuration."""

    log_level: str = "WARNING"
    log_format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    enable_json: bool = True


@dataclass
class ComprehensiveConfig:
    """Main configuration containing all subsections."""

    network: NetworkConfig = field(default_factory=NetworkConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    native: NativeConfig = field(default_factory=NativeConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


SECTIONS = ("network", "cache", "native", "logging")

_global_config: Optional[ComprehensiveConfig] = None


def validate_config_values(config: ComprehensiveConfig) -> List[str]:
    """
    Validate configuration values and return any errors.

    Args:
        config: Configuration to validate

    Returns:
        List[str]: List of validation errors (empty if valid)
    """
    errors = []

    def positive(value: Any) -> bool:
        return isinstance(value, (int, float)) and not isinstance(value, bool) and value > 0

    for key in (
        "connect_timeout",
        "read_timeout",
        "pool_timeout",
        "max_connections",
        "max_keepalive_connections",
        "chunk_size",
        "max_parallel_downloads",
    ):
        if not positive(getattr(config.network, key)):
            errors.append(f"network.{key} must be positive")

    if not config.cache.cache_dir:
        errors.append("cache.cache_dir must not be empty")

    if str(config.logging.log_level).upper() not in (
        "DEBUG",
        "INFO",
        "WARNING",
        "ERROR",
        "CRITICAL",
    ):
        errors.append(f"logging.log_level is not a logging level: {config.logging.log_level}")

    return errors


def load_config_file(config_path: Path) -> Optional[Dict[str, Any]]:
    """Load config from a JSON, YAML or TOML file."""
    if not config_path.exists():
        return None

    suffix = config_path.suffix.lower()
    try:
        with open(config_path, encoding="utf-8") as f:
            if suffix in (".yaml", ".yml"):
                return yaml.safe_load(f)
            elif suffix == ".toml":
                return toml.load(f)
            elif suffix == ".json":
                return json.load(f)
    except (OSError, ValueError, yaml.YAMLError) as e:
        console.print(f"⚠️  Error loading config from {config_path}: {e}", style="yellow")

    return None


def find_config_file() -> Optional[Path]:
    """Find config file in standard locations."""
    locations = [
        Path.cwd() / ".adhoc-fetch.json",
        Path.cwd() / ".adhoc-fetch.yaml",
        Path.cwd() / ".adhoc-fetch.yml",
        Path.cwd() / ".adhoc-fetch.toml",
        Path.home() / ".config" / "adhoc-fetch" / "config.json",
        Path.home() / ".config" / "adhoc-fetch" / "config.yaml",
        Path.home() / ".config" / "adhoc-fetch" / "config.toml",
    ]

    for location in locations:
        if location.exists():
            return location

    return None


def load_environment_overrides(config: ComprehensiveConfig) -> None:
    """Apply ADHOC_FETCH_* environment variable overrides."""

    def get_env_bool(key: str, default: bool = False) -> bool:
        value = os.environ.get(key, "").lower()
        return value in ["true", "1", "yes", "on"] if value else default

    def get_env_int(key: str) -> Optional[int]:
        try:
            return int(os.environ[key]) if key in os.environ else None
        except ValueError:
            console.print(f"⚠️  Invalid integer value for {key}, using default", style="yellow")
            return None

    def get_env_float(key: str) -> Optional[float]:
        try:
            return float(os.environ[key]) if key in os.environ else None
        except ValueError:
            console.print(f"⚠️  Invalid float value for {key}, using default", style="yellow")
            return None

    if user_agent := os.environ.get("ADHOC_FETCH_USER_AGENT"):
        config.network.user_agent = user_agent
    if connect_timeout := get_env_float("ADHOC_FETCH_CONNECT_TIMEOUT"):
        config.network.connect_timeout = connect_timeout
    if read_timeout := get_env_float("ADHOC_FETCH_READ_TIMEOUT"):
        config.network.read_timeout = read_timeout
    if parallel := get_env_int("ADHOC_FETCH_MAX_PARALLEL_DOWNLOADS"):
        config.network.max_parallel_downloads = parallel
    config.network.offline = get_env_bool("ADHOC_FETCH_OFFLINE", config.network.offline)

    if cache_dir := os.environ.get("ADHOC_FETCH_CACHE_DIR"):
        config.cache.cache_dir = cache_dir
    config.cache.enable_persistent_cache = get_env_bool(
        "ADHOC_FETCH_PERSISTENT_CACHE", config.cache.enable_persistent_cache
    )

    if java_home := os.environ.get("ADHOC_FETCH_JAVA_HOME"):
        config.native.java_home = java_home

    if log_level := os.environ.get("ADHOC_FETCH_LOG_LEVEL"):
        config.logging.log_level = log_level.upper()


def apply_config_section(
    config: Any, section_data: Dict[str, Any], section_name: str
) -> None:
    """Apply configuration from dictionary to config section."""
    for key, value in section_data.items():
        if hasattr(config, key):
            setattr(config, key, value)
        else:
            console.print(
                f"⚠️  Unknown config key in {section_name}: {key}", style="yellow"
            )


def build_config(
    file_config: Optional[Dict[str, Any]] = None, strict: bool = False
) -> ComprehensiveConfig:
    """
    Build a configuration from file data and the environment.

    With ``strict`` the environment is ignored and invalid values are kept
    as they are, so ``validate_config_values`` can report them.
    """
    config = ComprehensiveConfig()

    if file_config:
        for section in SECTIONS:
            if isinstance(file_config.get(section), dict):
                apply_config_section(getattr(config, section), file_config[section], section)

    if strict:
        return config

    load_environment_overrides(config)

    validation_errors = validate_config_values(config)
    if validation_errors:
        console.print("⚠️  Configuration validation errors:", style="red")
        for error in validation_errors:
            console.print(f"  • {error}", style="red")
        console.print("Using default values for invalid settings.", style="yellow")
        defaults = ComprehensiveConfig()
        for error in validation_errors:
            section, _, key = error.split(" ", 1)[0].partition(".")
            setattr(getattr(config, section), key, getattr(getattr(defaults, section), key))

    return config


def load_config() -> ComprehensiveConfig:
    """Load configuration from file and environment."""
    global _global_config

    if _global_config is not None:
        return _global_config

    file_config = None
    config_file = find_config_file()
    if config_file:
        file_config = load_config_file(config_file)

    _global_config = build_config(file_config)
    return _global_config


def get_config() -> ComprehensiveConfig:
    """Get the global configuration instance."""
    global _global_config
    if _global_config is None:
        _global_config = load_config()
    return _global_config


def set_config(config: ComprehensiveConfig) -> None:
    """Install an explicit configuration as the global instance."""
    global _global_config
    _global_config = config


def reset_config() -> None:
    """Reset the global configuration (useful for testing)."""
    global _global_config
    _global_config = None


def config_to_dict(config: ComprehensiveConfig) -> Dict[str, Any]:
    """Render a configuration as a plain dictionary."""
    return {section: asdict(getattr(config, section)) for section in SECTIONS}


def create_sample_config() -> str:
    """Generate a sample configuration file with every default spelled out."""
    return json.dumps(config_to_dict(ComprehensiveConfig()), indent=2)
