"""Exception classes raised by tagcache backends."""

from typing import Any, Dict, Optional


class TagCacheError(Exception):
    """Base exception for all tagcache errors.

    Args:
        message: Human readable error message
        details: Optional structured context about the failure
    """

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} (details: {self.details})"
        return self.message


class ConfigurationError(TagCacheError):
    """Raised when a backend cannot be configured or its client library is missing."""

    pass


class InvalidArgumentError(TagCacheError, ValueError):
    """Raised for an unknown cleaning mode, tag match mode or backend name."""

    pass


class CacheBackendError(TagCacheError):
    """Raised when a bulk or enumeration operation fails in the datastore."""

    pass
