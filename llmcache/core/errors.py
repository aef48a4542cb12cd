"""Custom error types for the cache service."""

from typing import Optional, Dict, Any
from enum import Enum
from datetime import datetime, timezone


class ErrorCategory(Enum):
    """Categories of cache errors."""
    CAPACITY = "capacity"
    STORAGE = "storage"
    CONFIGURATION = "configuration"
    UNKNOWN = "unknown"


class CacheError(Exception):
    """Base exception for cache errors."""

    def __init__(
        self,
        message: str,
        category: ErrorCategory = ErrorCategory.UNKNOWN,
        details: Optional[Dict[str, Any]] = None,
        recoverable: bool = True
    ):
        """Initialize cache error."""
        super().__init__(message)
        self.message = message
        self.category = category
        self.details = details or {}
        self.recoverable = recoverable
        self.timestamp = datetime.now(timezone.utc)

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for logging/response."""
        return {
            "error": self.message,
            "category": self.category.value,
            "details": self.details,
            "recoverable": self.recoverable,
            "timestamp": self.timestamp.isoformat(),
        }


class CapacityError(CacheError):
    """A value is too large to be cached."""

    def __init__(self, key: str, size_bytes: int, limit_bytes: int):
        super().__init__(
            message=f"Value for key {key} is {size_bytes} bytes (limit {limit_bytes})",
            category=ErrorCategory.CAPACITY,
            details={"key": key, "size_bytes": size_bytes, "limit_bytes": limit_bytes},
            recoverable=True
        )


class StorageError(CacheError):
    """Durable store I/O, timeout or serialization failure."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        key: Optional[str] = None,
        timed_out: bool = False
    ):
        details: Dict[str, Any] = {}
        if operation:
            details["operation"] = operation
        if key:
            details["key"] = key
        if timed_out:
            details["timed_out"] = True

        super().__init__(
            message=message,
            category=ErrorCategory.STORAGE,
            details=details,
            recoverable=True
        )


class CacheConfigError(CacheError, ValueError):
    """Invalid threshold, TTL or limit configuration."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(
            message=message,
            category=ErrorCategory.CONFIGURATION,
            details={"field": field} if field else {},
            recoverable=False
        )


class ServiceNotInitializedError(Exception):
    """Raised when accessing a cache service before the registry is initialized."""

    def __init__(self, service_name: str):
        super().__init__(f"Service '{service_name}' has not been initialized. "
                         f"Call registry.initialize() first.")
        self.service_name = service_name
