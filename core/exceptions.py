"""
Custom exceptions for the sync engine with structured error context.

Every exception carries a context dict for debugging and monitoring and
chains the original exception when one was caught.

Exception Hierarchy:
    SyncException (base)
    ├── FeedError
    │   ├── TransientNetworkError   (retryable)
    │   ├── RateLimitedError        (retryable, retry_after)
    │   ├── AuthError               (non-retryable, fatal)
    │   └── BadRequestError         (non-retryable)
    ├── CircuitOpenError
    ├── TransformationError
    │   └── ValidationError
    ├── LoadError
    │   ├── DatabaseError
    │   │   └── DatabaseConnectionError (retryable)
    │   └── UpsertError
    ├── CheckpointError
    ├── PipelineError
    └── RetryableError / NonRetryableError (mixins)
"""

from typing import Optional, Dict, Any
from datetime import datetime, timezone


class SyncException(Exception):
    """
    Base exception for all sync-related errors.

    Attributes:
        message: Human-readable error message
        context: Additional context information (resource, status code, etc.)
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
        """Convert exception to dictionary for logging/storage."""
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

class RetryableError(SyncException):
    """
    Mixin for errors that should trigger retry logic.

    Use this for transient errors like:
    - Network timeouts
    - Rate limiting (HTTP 429, 403 from the feed)
    - Server errors (HTTP 5xx)
    - Temporary database connection issues
    """
    pass


class NonRetryableError(SyncException):
    """
    Mixin for errors that should NOT trigger retry logic.

    Use this for permanent errors like:
    - Authentication failures (HTTP 401)
    - Malformed queries (other HTTP 4xx)
    - Invalid records
    """
    pass


# ============================================================================
# Feed Errors
# ============================================================================

class FeedError(SyncException):
    """
    Base exception for upstream feed failures.

    Context should include:
        - url: The feed URL that failed
        - resource: Feed resource name (Property, Media, ...)
        - status_code: HTTP status code (if applicable)
        - response_body: Response body (truncated if large)
    """

    @property
    def status_code(self) -> Optional[int]:
        return self.context.get("status_code")


class TransientNetworkError(RetryableError, FeedError):
    """Timeouts, connection errors and HTTP 5xx responses."""
    pass


class RateLimitedError(RetryableError, FeedError):
    """HTTP 429/403 throttling responses, retried after backoff."""

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None,
        retry_after: Optional[float] = None
    ):
        super().__init__(message, context, original_exception)
        self.retry_after = retry_after  # Seconds to wait before retry
        if retry_after is not None:
            self.context["retry_after"] = retry_after


class AuthError(NonRetryableError, FeedError):
    """Authentication failures (HTTP 401 or missing token). Fatal for the run."""
    pass


class BadRequestError(NonRetryableError, FeedError):
    """Any other 4xx response. Not retried and not counted by the breaker."""
    pass


class ListingNotFoundError(NonRetryableError, FeedError):
    """The feed has no record for a requested listing key."""
    pass


# ============================================================================
# Circuit Breaker
# ============================================================================

class CircuitOpenError(SyncException):
    """
    Raised when a call is rejected by an open circuit breaker.

    Context includes:
        - breaker: Name of the guarded dependency
        - state: Breaker state at rejection time
        - next_attempt_time: Clock value when a trial call will be admitted
    """
    pass


# ============================================================================
# Transformation Errors
# ============================================================================

class TransformationError(SyncException):
    """Base exception for record mapping failures."""
    pass


class ValidationError(NonRetryableError, TransformationError):
    """
    Raised when a raw feed record cannot be mapped to a sink row.

    Context should include:
        - resource: Feed resource name
        - record_key: Key of the offending record (if present)
        - field_errors: List of field-level errors
    """
    pass


# ============================================================================
# Load Errors
# ============================================================================

class LoadError(SyncException):
    """Base exception for sink write failures."""
    pass


class DatabaseError(LoadError):
    """
    Exception raised when database operations fail.

    Context should include:
        - operation: Type of database operation (UPSERT, SELECT)
        - table_name: Name of the table
    """
    pass


class DatabaseConnectionError(RetryableError, DatabaseError):
    """Database connection errors that should be retried."""
    pass


class UpsertError(LoadError):
    """
    Raised when an upsert leaves records unwritten.

    Context should include:
        - table_name: Target table
        - failed: Number of records not written
        - failed_chunks: Indexes of the chunks that failed
    """
    pass


# ============================================================================
# Checkpoint / Pipeline Errors
# ============================================================================

class CheckpointError(SyncException):
    """
    Exception raised when cursor or sync log management fails.

    Context should include:
        - resource: Feed resource name
        - feed_scope: Feed scope of the cursor
        - operation: Operation that failed (advance, load, append)
    """
    pass


class PipelineError(SyncException):
    """Raised when a pipeline ends in the FAILED state."""
    pass
