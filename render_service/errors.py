"""
Typed errors raised by the render core.

Every error carries a human-readable message plus optional details, the
HTTP status the boundary should answer with, and whether a client may
retry the same request later.
"""

from typing import Any, Dict, Optional


class ConversionError(Exception):
    """Generic HTML to PDF conversion failure."""

    status_code: int = 500
    retryable: bool = False

    def __init__(self, message: str, details: Optional[str] = None):
        self.message = message
        self.details = details
        super().__init__(message if details is None else f"{message}: {details}")

    def to_dict(self) -> Dict[str, Any]:
        """Structured body returned to HTTP callers."""
        return {
            "error": self.message,
            "details": self.details,
        }


class InvalidOptionsError(ConversionError):
    """Caller supplied an unknown option key or an invalid value."""

    status_code = 400


class InvalidSourceError(ConversionError):
    """The document source is unusable (blank markup, path outside the documents directory)."""

    status_code = 400


class EmptySourceError(InvalidSourceError):
    """Inline markup was empty."""


class SourceNotFoundError(ConversionError):
    """The HTML file to convert does not exist."""

    status_code = 404

    def __init__(self, path: str):
        self.path = path
        super().__init__("HTML file not found", str(path))


class NavigationTimeoutError(ConversionError):
    """Loading the document exceeded the navigation bound."""

    status_code = 504

    def __init__(self, timeout_ms: int, details: Optional[str] = None):
        self.timeout_ms = timeout_ms
        super().__init__(f"Document did not finish loading within {timeout_ms}ms", details)


class ConversionTimeoutError(ConversionError):
    """The whole conversion exceeded the per-request deadline."""

    status_code = 504

    def __init__(self, timeout_seconds: float):
        self.timeout_seconds = timeout_seconds
        super().__init__(f"Conversion did not complete within {timeout_seconds:g}s")


class EngineLaunchError(ConversionError):
    """Chromium could not be started (or restarted)."""

    status_code = 503


class EngineShutdownError(ConversionError):
    """The engine is shutting down and refuses new sessions."""

    status_code = 503
    retryable = True


class RenderCapacityError(ConversionError):
    """No render slot became free within the wait bound."""

    status_code = 503
    retryable = True

    def __init__(self, max_concurrent: int, waited_seconds: float):
        self.max_concurrent = max_concurrent
        self.waited_seconds = waited_seconds
        super().__init__(
            "Service overloaded. Too many concurrent PDF operations.",
            f"{max_concurrent} renders in progress, waited {waited_seconds:g}s for a slot",
        )


class SessionClosedError(ConversionError):
    """An operation was attempted on a session that is already closed."""
