"""
Error handling for adhoc-fetch.

Provides the exception hierarchy raised by the download and native toolchain
layers, plus structured error reporting with credential redaction and
per-category callbacks.
"""

import logging
import re
import sys
import traceback
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import urlparse


class AdHocFetchError(Exception):
    """Base class for every error raised by adhoc-fetch."""


class BuildConfigurationError(AdHocFetchError):
    """A declaration is invalid; raised before any task executes."""


class UnrecognizedPlatformError(BuildConfigurationError):
    """The target operating system family is not LINUX, MACOS or WINDOWS."""

    def __init__(self, family: Any):
        self.family = family
        super().__init__(f'unrecognized operating system family "{family}"')


class MissingNativeLibraryError(BuildConfigurationError):
    """No candidate location holds the required native runtime library."""

    def __init__(self, family: Any, java_home: Any, candidates: List[Any]):
        self.family = family
        self.java_home = java_home
        self.candidates = list(candidates)
        searched = ", ".join(str(c) for c in self.candidates)
        super().__init__(
            f"no JVM library for {family} under {java_home} (searched: {searched})"
        )


class ResolutionError(AdHocFetchError):
    """An artifact could not be resolved; raised at first access."""

    retryable = False

    def __init__(self, message: str, coordinate: Any = None, url: Optional[str] = None):
        self.coordinate = coordinate
        self.url = url
        super().__init__(message)


class ArtifactNotFoundError(ResolutionError):
    """The server answered 404 for every candidate URL."""

    def __init__(self, coordinate: Any, urls: List[str]):
        self.urls = list(urls)
        if len(self.urls) == 1:
            message = f"Could not resolve {coordinate}: {self.urls[0]} returned HTTP 404"
        else:
            message = f"Could not resolve {coordinate}: not found at {', '.join(self.urls)}"
        super().__init__(message, coordinate, self.urls[-1] if self.urls else None)


class NetworkResolutionError(ResolutionError):
    """Connection failure or timeout. Safe to retry."""

    retryable = True


class DownloadCancelledError(ResolutionError):
    """The build was cancelled while the download was in flight."""


class ArchiveError(AdHocFetchError):
    """An archive could not be read or holds an unsafe entry."""


class ErrorLevel(Enum):
    """Error severity levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class ErrorCategory(Enum):
    """Error categories for better classification."""

    CONFIGURATION = "CONFIGURATION"
    NETWORK = "NETWORK"
    RESOLUTION = "RESOLUTION"
    FILESYSTEM = "FILESYSTEM"
    NATIVE_TOOLCHAIN = "NATIVE_TOOLCHAIN"
    ARCHIVE = "ARCHIVE"


@dataclass
class ErrorContext:
    """Structured error context information."""

    level: ErrorLevel
    category: ErrorCategory
    message: str
    module: str
    function: str
    details: Dict[str, Any] = field(default_factory=dict)
    exception: Optional[Exception] = None
    traceback_info: Optional[str] = None
    suggestions: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Convert error context to dictionary for logging."""
        return {
            "level": self.level.value,
            "category": self.category.value,
            "message": self.message,
            "module": self.module,
            "function": self.function,
            "details": self.details,
            "exception_type": type(self.exception).__name__ if self.exception else None,
            "exception_message": str(self.exception) if self.exception else None,
            "traceback": self.traceback_info,
            "suggestions": self.suggestions,
        }


class SecureLogger:
    """Logger that strips credentials out of messages and URLs."""

    SENSITIVE_PATTERNS = [
        (r'token["\s]*[:=]["\s]*([a-zA-Z0-9_\-+=/.]{8,})', 'token="[REDACTED]"'),
        (r'password["\s]*[:=]["\s]*([^\s"\']+)', 'password="[REDACTED]"'),
        (r"(https?://[^@\s/]+:)[^@\s/]+@", r"\1[REDACTED]@"),
        (r"Authorization:\s*\w+\s+([^\s]+)", "Authorization: [REDACTED]"),
    ]

    def __init__(self, name: str, level: int = logging.WARNING):
        """
        Initialize secure logger.

        Args:
            name: Logger name
            level: Logging level
        """
        self.logger = logging.getLogger(name)
        self.logger.setLevel(level)

        if not self.logger.handlers:
            handler = logging.StreamHandler(sys.stderr)
            handler.setFormatter(
                logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
            )
            self.logger.addHandler(handler)

    def _sanitize_message(self, message: str) -> str:
        sanitized = message
        for pattern, replacement in self.SENSITIVE_PATTERNS:
            sanitized = re.sub(pattern, replacement, sanitized, flags=re.IGNORECASE)
        return sanitized

    def _sanitize_dict(self, data: Dict[str, Any]) -> Dict[str, Any]:
        sanitized = {}
        sensitive_keys = {"token", "password", "secret", "credential", "auth"}

        for key, value in data.items():
            if any(sensitive_key in key.lower() for sensitive_key in sensitive_keys):
                sanitized[key] = "[REDACTED]"
            elif isinstance(value, dict):
                sanitized[key] = self._sanitize_dict(value)
            elif isinstance(value, str):
                sanitized[key] = self._sanitize_message(value)
            else:
                sanitized[key] = value

        return sanitized

    def log_error_context(self, context: ErrorContext):
        """
        Log error context with appropriate level.

        Args:
            context: Error context to log
        """
        log_data = {
            "category": context.category.value,
            "module": context.module,
            "function": context.function,
            "details": self._sanitize_dict(context.details),
        }

        if context.exception:
            log_data["exception"] = type(context.exception).__name__

        if context.suggestions:
            log_data["suggestions"] = context.suggestions

        log_message = f"{self._sanitize_message(context.message)} | {log_data}"
        level = getattr(logging, context.level.value)
        self.logger.log(level, log_message)


# Error callback type
ErrorCallback = Callable[[ErrorContext], None]


class ErrorHandler:
    """
    Centralized error handler.

    Logs every reported error, keeps per-category statistics and notifies
    registered callbacks. It never swallows the original exception: callers
    report and then raise.
    """

    def __init__(
        self,
        logger_name: str = "adhoc_fetch",
        log_level: int = logging.WARNING,
        enable_callbacks: bool = True,
    ):
        self.logger = SecureLogger(logger_name, log_level)
        self.enable_callbacks = enable_callbacks
        self.error_callbacks: Dict[ErrorCategory, List[ErrorCallback]] = {}
        self.global_callbacks: List[ErrorCallback] = []
        self.error_stats: Dict[str, int] = {}

    def register_callback(
        self, callback: ErrorCallback, category: Optional[ErrorCategory] = None
    ):
        """
        Register error callback.

        Args:
            callback: Function to call on errors
            category: Error category to filter, None for all errors
        """
        if not self.enable_callbacks:
            return

        if category is None:
            self.global_callbacks.append(callback)
        else:
            self.error_callbacks.setdefault(category, []).append(callback)

    def handle_error(
        self,
        level: ErrorLevel,
        category: ErrorCategory,
        message: str,
        module: str,
        function: str,
        exception: Optional[Exception] = None,
        details: Optional[Dict[str, Any]] = None,
        suggestions: Optional[List[str]] = None,
    ) -> ErrorContext:
        """
        Handle an error with structured logging and callbacks.

        Returns:
            ErrorContext: The created error context
        """
        context = ErrorContext(
            level=level,
            category=category,
            message=message,
            module=module,
            function=function,
            details=details or {},
            exception=exception,
            traceback_info=traceback.format_exc() if exception else None,
            suggestions=suggestions or [],
        )

        stat_key = f"{category.value}_{level.value}"
        self.error_stats[stat_key] = self.error_stats.get(stat_key, 0) + 1

        self.logger.log_error_context(context)

        if self.enable_callbacks:
            for callback in self.error_callbacks.get(category, []) + self.global_callbacks:
                try:
                    callback(context)
                except Exception as cb_error:
                    # A broken callback must not mask the error being reported
                    self.logger.logger.error(f"Error in callback: {cb_error}")

        return context

    def error(
        self, category: ErrorCategory, message: str, module: str, function: str, **kwargs
    ) -> ErrorContext:
        """Handle error level error."""
        return self.handle_error(
            ErrorLevel.ERROR, category, message, module, function, **kwargs
        )

    def get_error_stats(self) -> Dict[str, int]:
        """Get error statistics."""
        return self.error_stats.copy()

    def reset_stats(self):
        """Reset error statistics."""
        self.error_stats.clear()


_global_error_handler: Optional[ErrorHandler] = None


def get_error_handler() -> ErrorHandler:
    """Get the global error handler instance."""
    global _global_error_handler
    if _global_error_handler is None:
        _global_error_handler = ErrorHandler()
    return _global_error_handler


def setup_error_handling(
    log_level: int = logging.WARNING,
    enable_callbacks: bool = True,
    logger_name: str = "adhoc_fetch",
) -> ErrorHandler:
    """Replace the global error handler with a freshly configured one."""
    global _global_error_handler
    _global_error_handler = ErrorHandler(logger_name, log_level, enable_callbacks)
    return _global_error_handler


def sanitize_authority(authority: str) -> str:
    """Drop user info from a URI authority (``user:pass@host:port``)."""
    return authority.rpartition("@")[2]


def sanitize_url(url: str) -> str:
    """
    Remove user info from a URL so it can be logged or shown.

    Args:
        url: URL that may contain credentials

    Returns:
        str: URL with the path intact and credentials removed
    """
    parsed = urlparse(url)
    if not (parsed.username or parsed.password):
        return url

    netloc = parsed.hostname or "unknown-host"
    if parsed.port:
        netloc += f":{parsed.port}"
    sanitized = f"{parsed.scheme}://{netloc}{parsed.path}"
    if parsed.query:
        sanitized += f"?{parsed.query}"
    return sanitized


def log_network_error(
    message: str,
    module: str,
    function: str,
    url: Optional[str] = None,
    status_code: Optional[int] = None,
    exception: Optional[Exception] = None,
):
    """
    Convenience function for logging download failures.

    Args:
        message: Error message
        module: Module name
        function: Function name
        url: URL that failed (credentials are removed)
        status_code: HTTP status code
        exception: Optional exception
    """
    details: Dict[str, Any] = {}
    if url is not None:
        details["url"] = sanitize_url(url)
    if status_code is not None:
        details["status_code"] = status_code

    suggestions = [
        "Check network connectivity",
        "Verify the download URI and artifact coordinate",
        "Retry with a warm cache or in offline mode",
    ]

    get_error_handler().error(
        ErrorCategory.NETWORK,
        message,
        module,
        function,
        details=details,
        exception=exception,
        suggestions=suggestions,
    )
