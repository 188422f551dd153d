"""
Shared error handling for the Query Cache Exporter.
"""

from typing import Dict, Any, Optional


class ExporterError(Exception):
    """Base exception for exporter errors.

    ``message`` is the short, caller-safe text returned in HTTP responses.
    ``details`` carries the full diagnostic context and is only logged.
    """

    status_code: int = 500

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)


class BadRequest(ExporterError):
    """Inbound path does not decompose into a valid cache key."""

    def __init__(self, message: str = "Invalid query path", details: Optional[Dict[str, Any]] = None):
        super().__init__("BAD_REQUEST", message, details)


class NotFound(ExporterError):
    """Unknown client or missing query definition."""

    def __init__(self, message: str = "Not found", details: Optional[Dict[str, Any]] = None):
        super().__init__("NOT_FOUND", message, details)


class UpstreamTimeout(ExporterError):
    """Upstream call exceeded its deadline."""

    def __init__(self, message: str = "Upstream query timed out", details: Optional[Dict[str, Any]] = None):
        super().__init__("TIMEOUT", message, details)


class UpstreamError(ExporterError):
    """Upstream returned a non-success status or could not be reached."""

    def __init__(self, message: str = "Failed to execute query", details: Optional[Dict[str, Any]] = None):
        super().__init__("UPSTREAM_ERROR", message, details)


class StoreIOError(ExporterError):
    """Cache storage read/write failure."""

    def __init__(self, message: str = "Cache storage failure", details: Optional[Dict[str, Any]] = None):
        super().__init__("STORE_IO_ERROR", message, details)


class ConfigError(ExporterError):
    """Configuration could not be loaded. Fatal at startup."""

    def __init__(self, message: str = "Invalid configuration", details: Optional[Dict[str, Any]] = None):
        super().__init__("CONFIG_ERROR", message, details)
