"""
Common exception types and error classification for order_relay.

Provides:
- ErrorCategory enum for handling decisions
- Typed exception hierarchy for relay errors
"""

from enum import Enum
from typing import Optional


class ErrorCategory(Enum):
    """
    Classification of error types for handling decisions.

    Categories:
        TRANSIENT: Temporary failures the Kafka client may recover from
                   (e.g., broker unavailable, request timeout)
        PERMANENT: Failures that won't succeed on retry
                   (e.g., malformed payload, invalid configuration)
        UNKNOWN: Unclassified errors
    """

    TRANSIENT = "transient"
    PERMANENT = "permanent"
    UNKNOWN = "unknown"


class RelayError(Exception):
    """
    Base exception for all relay errors.

    Attributes:
        message: Human-readable error description
        category: Error classification
        cause: Original exception if wrapping
        context: Additional context dict for debugging
    """

    category: ErrorCategory = ErrorCategory.UNKNOWN

    def __init__(
        self,
        message: str,
        cause: Optional[Exception] = None,
        context: Optional[dict] = None,
    ):
        self.message = message
        self.cause = cause
        self.context = context or {}
        super().__init__(message)

    @property
    def is_retryable(self) -> bool:
        """Whether the underlying operation could succeed if attempted again."""
        return self.category in (ErrorCategory.TRANSIENT, ErrorCategory.UNKNOWN)

    def __str__(self) -> str:
        parts = [self.message]
        if self.cause:
            parts.append(f"Caused by: {self.cause}")
        return " | ".join(parts)


class ConfigurationError(RelayError):
    """Invalid or incomplete configuration, detected at connection time."""

    category = ErrorCategory.PERMANENT


class TrustMaterialError(RelayError):
    """Trust store could not be read, built or written."""

    category = ErrorCategory.PERMANENT


class RecordDecodeError(RelayError):
    """Consumed payload is not a valid order record."""

    category = ErrorCategory.PERMANENT


class PublishError(RelayError):
    """
    A publish did not reach the broker.

    Category is TRANSIENT when the Kafka client flagged the failure as
    retriable, PERMANENT otherwise.
    """

    def __init__(
        self,
        message: str,
        retriable: bool = False,
        cause: Optional[Exception] = None,
        context: Optional[dict] = None,
    ):
        super().__init__(message, cause=cause, context=context)
        self.category = (
            ErrorCategory.TRANSIENT if retriable else ErrorCategory.PERMANENT
        )


__all__ = [
    "ErrorCategory",
    "RelayError",
    "ConfigurationError",
    "TrustMaterialError",
    "RecordDecodeError",
    "PublishError",
]
