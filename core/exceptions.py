"""
Custom exceptions for the ingestion pipeline with structured error context.

This module provides the exception hierarchy used throughout the
pipeline. Each exception includes context information for debugging
and for the operator-facing run summary.

Exception Hierarchy:
    IngestionError (base)
    ├── FetchError
    │   ├── RateLimitError
    │   └── TransientFetchError
    ├── NormalizationError
    │   └── RecordRejectedError
    ├── StorageError
    │   ├── WriteError
    │   └── DatabaseConnectionError
    ├── CheckpointError
    ├── FatalIngestionError
    └── RetryableError / NonRetryableError (mixins)

Single fetches report failures as tagged results rather than raising
(see ingestion.extractors.api_extractor); these exceptions are raised at
batch level and for conditions that end the process.
"""

from typing import Optional, Dict, Any
from datetime import datetime, timezone


class IngestionError(Exception):
    """
    Base exception for all ingestion errors.

    Attributes:
        message: Human-readable error message
        context: Additional context information (stream, cursor, etc.)
        original_exception: The original exception that was caught (if any)
    """

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None
    ):
        self.message = message
        self.context = context or {}
        self.original_exception = original_exception
        self.timestamp = datetime.now(timezone.utc)

        self.context["error_timestamp"] = self.timestamp.isoformat()

        super().__init__(message)
        if original_exception:
            self.__cause__ = original_exception

    def __str__(self) -> str:
        """Format error message with context."""
        base_msg = f"{self.__class__.__name__}: {self.message}"

        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            base_msg += f" | Context: {context_str}"

        if self.original_exception:
            base_msg += f" | Caused by: {type(self.original_exception).__name__}: {str(self.original_exception)}"

        return base_msg

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
            "original_error": str(self.original_exception) if self.original_exception else None
        }


# ============================================================================
# Retry Strategy Mixins
# ============================================================================

class RetryableError(IngestionError):
    """
    Mixin for errors that should trigger retry logic.

    Use this for transient errors like:
    - Network timeouts and connection resets
    - Rate limiting (HTTP 429)
    - Lost database connections
    """

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None,
        max_retries: int = 3,
        retry_delay: float = 1.0
    ):
        super().__init__(message, context, original_exception)
        self.max_retries = max_retries
        self.retry_delay = retry_delay


class NonRetryableError(IngestionError):
    """Mixin for errors that should NOT trigger retry logic."""
    pass


# ============================================================================
# Fetch Errors
# ============================================================================

class FetchError(IngestionError):
    """
    Base exception for remote API failures.

    Context should include:
        - stream: Ingestion stream name
        - cursor: Window start cursor
        - outcome: Fetch outcome that caused the failure
    """
    pass


class RateLimitError(RetryableError, FetchError):
    """Rate limiting (HTTP 429) that outlasted the fetcher's retries."""

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None,
        retry_after: Optional[float] = None
    ):
        super().__init__(message, context, original_exception)
        self.retry_after = retry_after
        if retry_after:
            self.context["retry_after"] = retry_after


class TransientFetchError(RetryableError, FetchError):
    """Timeouts, connection resets and 5xx responses after retries ran out."""
    pass


# ============================================================================
# Normalization Errors
# ============================================================================

class NormalizationError(IngestionError):
    """Base exception for payload normalization failures."""
    pass


class RecordRejectedError(NonRetryableError, NormalizationError):
    """
    A payload from which no identity could be derived.

    Context should include:
        - reason: Reject reason code
        - element: Cursor element (record id / offset) of the payload
    """

    def __init__(
        self,
        message: str,
        reason: str,
        context: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, context)
        self.reason = reason
        self.context["reason"] = reason


# ============================================================================
# Storage Errors
# ============================================================================

class StorageError(IngestionError):
    """
    Base exception for database failures.

    Context should include:
        - operation: Type of database operation (INSERT, UPSERT, SELECT)
        - table_name: Name of the table
    """
    pass


class WriteError(RetryableError, StorageError):
    """A batch write failed; the batch is retried as a whole."""
    pass


class DatabaseConnectionError(RetryableError, StorageError):
    """Database connection errors that should be retried."""
    pass


# ============================================================================
# Checkpoint / Fatal Errors
# ============================================================================

class CheckpointError(IngestionError):
    """
    Exception raised when checkpoint storage cannot be read or written.

    Context should include:
        - stream: Ingestion stream name
        - operation: Operation that failed (load, save, reset)
    """
    pass


class FatalIngestionError(NonRetryableError):
    """Conditions that end the process with a non-zero exit status."""
    pass
