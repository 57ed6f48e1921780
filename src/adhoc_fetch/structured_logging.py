"""
Structured logging configuration for adhoc-fetch.

Emits one JSON object per event so CI logs can be searched for the
coordinate, URL or platform behind a failed build.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

_RESERVED_ATTRS = {
    "name",
    "msg",
    "args",
    "levelname",
    "levelno",
    "pathname",
    "filename",
    "module",
    "lineno",
    "funcName",
    "created",
    "msecs",
    "relativeCreated",
    "thread",
    "threadName",
    "processName",
    "process",
    "taskName",
    "getMessage",
    "exc_info",
    "exc_text",
    "stack_info",
}


class StructuredFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "component": record.name,
            "message": record.getMessage(),
        }

        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS:
                log_entry[key] = value

        return json.dumps(log_entry, default=str)


class BuildLogger:
    """Structured logger for build events."""

    def __init__(self, name: str):
        self.logger = logging.getLogger(f"adhoc_fetch.{name}")
        self._handler: Optional[logging.Handler] = None
        self._setup_logger()
        self.build_context: Dict[str, Any] = {}

    def _setup_logger(self) -> None:
        if not self.logger.handlers:
            self._handler = logging.StreamHandler(sys.stderr)
            self._handler.setFormatter(StructuredFormatter())
            self.logger.addHandler(self._handler)
            self.logger.propagate = False
            self.logger.setLevel(logging.WARNING)

    def set_formatter(self, formatter: logging.Formatter) -> None:
        if self._handler is not None:
            self._handler.setFormatter(formatter)

    def set_build_context(self, project: Optional[str] = None) -> None:
        self.build_context = {"project": project} if project else {}

    def _log(self, level: str, event_type: str, **kwargs) -> None:
        log_data = {"event_type": event_type, **self.build_context, **kwargs}
        getattr(self.logger, level)(event_type, extra=log_data)

    def info(self, event_type: str, **kwargs) -> None:
        """Log info level event."""
        self._log("info", event_type, **kwargs)

    def warning(self, event_type: str, **kwargs) -> None:
        """Log warning level event."""
        self._log("warning", event_type, **kwargs)

    def error(self, event_type: str, **kwargs) -> None:
        """Log error level event."""
        self._log("error", event_type, **kwargs)

    def debug(self, event_type: str, **kwargs) -> None:
        """Log debug level event."""
        self._log("debug", event_type, **kwargs)


_repository_logger = BuildLogger("repositories")
_resolution_logger = BuildLogger("resolution")
_native_logger = BuildLogger("native")

_ALL_LOGGERS: List[BuildLogger] = [_repository_logger, _resolution_logger, _native_logger]


def get_resolution_logger() -> BuildLogger:
    """Get artifact resolution logger."""
    return _resolution_logger


def log_repository_registered(
    base_uri: str, pattern: str, exclusive_group: Optional[str] = None
) -> None:
    log_data = {"base_uri": base_uri, "pattern": pattern}
    if exclusive_group is not None:
        log_data["exclusive_group"] = exclusive_group
    _repository_logger.debug("repository_registered", **log_data)


def log_cache_hit(coordinate: str, url: str, path: str) -> None:
    _resolution_logger.debug("artifact_cache_hit", coordinate=coordinate, url=url, path=path)


def log_download_started(coordinate: str, url: str) -> None:
    _resolution_logger.info("artifact_download_started", coordinate=coordinate, url=url)


def log_download_completed(
    coordinate: str, url: str, size_bytes: int, duration_ms: int
) -> None:
    _resolution_logger.info(
        "artifact_download_completed",
        coordinate=coordinate,
        url=url,
        size_bytes=size_bytes,
        duration_ms=duration_ms,
    )


def log_download_failed(coordinate: str, url: str, reason: str) -> None:
    _resolution_logger.error(
        "artifact_download_failed", coordinate=coordinate, url=url, reason=reason
    )


def log_native_library_located(family: str, include_subdir: str, library_path: str) -> None:
    _native_logger.info(
        "native_library_located",
        family=family,
        include_subdir=include_subdir,
        library_path=library_path,
    )


def log_rpaths_injected(task: str, rpaths: List[str]) -> None:
    _native_logger.debug("rpaths_injected", task=task, rpaths=rpaths)


def set_build_context(project: Optional[str] = None) -> None:
    """Attach the project name to every subsequent event."""
    for logger in _ALL_LOGGERS:
        logger.set_build_context(project)


def configure_logging(log_level: str = "WARNING", enable_json: bool = True, log_format: Optional[str] = None) -> None:
    """Configure logging for the application."""
    level = getattr(logging, log_level.upper(), logging.WARNING)

    for logger in _ALL_LOGGERS:
        logger.logger.setLevel(level)
        if not enable_json:
            logger.set_formatter(logging.Formatter(log_format))
        else:
            logger.set_formatter(StructuredFormatter())
