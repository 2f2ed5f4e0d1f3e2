"""
Custom exceptions for the resilience layer.

Components raise these so callers can tell retryable provider failures
apart from corrupt snapshots and bad configuration.
"""


class ResilienceError(Exception):
    """Base exception for all resilience layer errors."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ProviderError(ResilienceError):
    """Raised when an embedding or delivery provider call fails.

    Always retryable: the same call may succeed on a later attempt.
    """

    def __init__(self, provider: str, reason: str, cause: Exception | None = None):
        details = {"provider": provider, "reason": reason}
        if cause:
            details["cause"] = str(cause)
        super().__init__(f"Provider {provider} failed: {reason}", details)
        self.provider = provider
        self.reason = reason
        self.cause = cause


class SerializationError(ResilienceError):
    """Raised when a persisted snapshot cannot be decoded."""

    def __init__(self, key: str, cause: Exception | None = None):
        details = {"key": key}
        if cause:
            details["cause"] = str(cause)
        super().__init__(f"Corrupt snapshot under key {key}", details)
        self.key = key
        self.cause = cause


class DimensionMismatchError(ResilienceError):
    """Raised when two embeddings have different dimensionality.

    Similarity scoring never raises this; it scores the pair as 0.
    """

    def __init__(self, expected: int, actual: int):
        super().__init__(
            f"Embedding dimension mismatch: {expected} != {actual}",
            {"expected": expected, "actual": actual},
        )
        self.expected = expected
        self.actual = actual


class StorageIOError(ResilienceError):
    """Raised when the key-value substrate fails to read or write."""

    def __init__(self, operation: str, key: str | None = None, cause: Exception | None = None):
        details = {"operation": operation}
        if key:
            details["key"] = key
        if cause:
            details["cause"] = str(cause)
        message = f"Storage I/O error during {operation}"
        if key:
            message += f": {key}"
        super().__init__(message, details)
        self.operation = operation
        self.key = key
        self.cause = cause


class ConfigError(ResilienceError):
    """Raised when a configuration value is invalid."""

    def __init__(self, field: str, reason: str):
        super().__init__(
            f"Invalid configuration for {field}: {reason}",
            {"field": field, "reason": reason},
        )
        self.field = field
        self.reason = reason
