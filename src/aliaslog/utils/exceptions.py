"""Custom exceptions for alias log monitor."""


class LogMonitorError(Exception):
    """Base exception for alias log monitor."""
    pass


class ConfigurationError(LogMonitorError):
    """Raised when configuration is invalid or missing."""
    pass


class ValidationError(LogMonitorError):
    """Raised when an aggregation request or alias input is malformed."""
    pass


class ResolutionError(LogMonitorError):
    """Raised when no users or aliases resolve for a query."""
    pass


class LogFileError(LogMonitorError):
    """Raised when a log source cannot be read or processed."""

    kind = "error"

    def __init__(self, message: str, path: str = ""):
        super().__init__(message)
        self.path = path


class NotFoundError(LogFileError):
    """Raised when a base path or file does not exist."""

    kind = "not_found"


class AccessDeniedError(LogFileError):
    """Raised when a base path or file cannot be read due to permissions."""

    kind = "access_denied"


class SourceTimeoutError(LogFileError):
    """Raised when a source does not answer within the read timeout."""

    kind = "timeout"


class WatcherError(LogMonitorError):
    """Base exception for directory watcher problems."""
    pass


class WatcherTransientError(WatcherError):
    """Raised when subscribing to or polling a directory fails."""
    pass

