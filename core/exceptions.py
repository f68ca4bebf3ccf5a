"""
Custom exceptions for the catalog sync pipeline with structured error context.

This module provides the exception hierarchy used throughout extraction,
staging, transformation and run tracking. Each exception includes context
information for debugging and is persisted verbatim on the SyncRun row
when it ends a run.

Exception Hierarchy:
    CatalogSyncError (base)
    ├── ExtractionError                 -> run status "failed"
    │   ├── BulkOperationError
    │   └── APIExtractionError
    │       ├── NetworkError, RateLimitError        (retryable)
    │       └── AuthenticationError, ResourceNotFoundError (non-retryable)
    ├── ExtractionTimeoutError          -> run status "timeout"
    ├── MalformedRecordError            (recovered: skipped and counted)
    ├── LoadError
    │   ├── DatabaseError
    │   ├── UpsertError
    │   └── BackupError
    ├── SyncStateError
    │   ├── SyncAlreadyRunningError
    │   ├── InvalidRunTransitionError
    │   └── SyncRunNotFoundError
    ├── SyncCancelledError              -> run status "cancelled"
    └── AliasMappingError
        ├── AliasNotFoundError
        └── CollectionNotFoundError

A record rejected by a business filter is not an exception; see
catalog_sync.transformers.catalog_transformer.TransformResult.
"""

from typing import Optional, Dict, Any
from datetime import datetime, timezone


class CatalogSyncError(Exception):
    """
    Base exception for all catalog sync errors.

    Attributes:
        message: Human-readable error message
        context: Additional context information (operation id, url, etc.)
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
            "context": {k: str(v) for k, v in self.context.items()},
            "timestamp": self.timestamp.isoformat(),
            "original_error": str(self.original_exception) if self.original_exception else None
        }


# ============================================================================
# Extraction Errors
# ============================================================================

class ExtractionError(CatalogSyncError):
    """Base exception for failures talking to the catalog source."""
    pass


class BulkOperationError(ExtractionError):
    """
    The source rejected the bulk query or the operation ended in a terminal
    error state (FAILED, CANCELED, EXPIRED).

    Context should include:
        - operation_id: Bulk operation id (if one was created)
        - status: Terminal status reported by the source
        - error_code: Source error code, surfaced verbatim
    """
    pass


class APIExtractionError(ExtractionError):
    """
    Exception raised when an HTTP call to the source fails.

    Context should include:
        - api_url: The endpoint that failed
        - status_code: HTTP status code (if applicable)
        - retry_count: Number of retries attempted
    """
    pass


class ExtractionTimeoutError(CatalogSyncError):
    """
    Polling exceeded the configured maximum wait.

    Deliberately not an ExtractionError: the outcome at the source is
    unknown, so the run is marked "timeout" rather than "failed".
    """
    pass


class MalformedRecordError(CatalogSyncError):
    """
    A single line of the bulk result could not be parsed.

    Context should include:
        - line_number: 1-based line number in the result file
        - reason: Parse or validation failure
    """
    pass


# ============================================================================
# Load Errors
# ============================================================================

class LoadError(CatalogSyncError):
    """Base exception for staging / catalog persistence failures."""
    pass


class DatabaseError(LoadError):
    """
    Exception raised when database operations fail.

    Context should include:
        - operation: Type of database operation (SELECT, UPSERT, ...)
        - table_name: Name of the table
    """
    pass


class UpsertError(LoadError):
    """
    Exception raised when an upsert batch fails.

    Context should include:
        - table_name: Target table
        - batch_size: Number of rows in the failed batch
    """
    pass


class BackupError(LoadError):
    """Pre-sync backup of the catalog table could not be taken."""
    pass


# ============================================================================
# Run State Errors
# ============================================================================

class SyncStateError(CatalogSyncError):
    """Base exception for illegal run state requests."""
    pass


class SyncAlreadyRunningError(SyncStateError):
    """A start was requested while another run is still active."""

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        active_run_id: Optional[str] = None
    ):
        super().__init__(message, context)
        self.active_run_id = active_run_id
        if active_run_id:
            self.context["active_run_id"] = active_run_id


class InvalidRunTransitionError(SyncStateError):
    """A terminal run was asked to change status again."""
    pass


class SyncRunNotFoundError(SyncStateError):
    """No run exists for the given run id."""
    pass


class SyncCancelledError(CatalogSyncError):
    """Raised inside a run when an operator cancellation was observed."""
    pass


# ============================================================================
# Retry Strategy Mixins
# ============================================================================

class RetryableError(CatalogSyncError):
    """
    Mixin for errors that should trigger retry logic.

    Use this for transient errors like:
    - Network timeouts
    - Rate limiting (HTTP 429)
    - Service unavailable (HTTP 5xx)
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


class NonRetryableError(CatalogSyncError):
    """Mixin for permanent errors (authentication, bad requests)."""
    pass


class NetworkError(RetryableError, APIExtractionError):
    """Network-related errors that should be retried."""
    pass


class RateLimitError(RetryableError, APIExtractionError):
    """Rate limiting errors (HTTP 429) that should be retried with backoff."""

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


class AuthenticationError(NonRetryableError, APIExtractionError):
    """Authentication failures (HTTP 401, 403) that should not be retried."""
    pass


class ResourceNotFoundError(NonRetryableError, APIExtractionError):
    """Resource not found errors (HTTP 404) that should not be retried."""
    pass


# ============================================================================
# Alias Administration Errors
# ============================================================================

class AliasMappingError(CatalogSyncError):
    """Base exception for administrative alias operations."""
    pass


class AliasNotFoundError(AliasMappingError):
    """No alias mapping row exists for the given id."""
    pass


class CollectionNotFoundError(AliasMappingError):
    """The canonical collection referenced by an assignment does not exist."""
    pass
