"""
Core utilities and configuration for the catalog sync service.

This package provides foundational components used throughout the pipeline:

Modules:
    config: Application configuration and environment variable management
    database: Database engine and session management
    exceptions: Custom exception hierarchy for error handling
    logging: Logging configuration
    security: API key and webhook signature verification

Usage:
    from core.config import settings
    from core.database import get_session
    from core.exceptions import BulkOperationError, ExtractionTimeoutError
    from core.logging import setup_logging

Example:
    setup_logging()

    orchestrator = SyncOrchestrator(session_factory=async_session_maker)
    run = await orchestrator.run(SyncTrigger.MANUAL)
"""

__all__ = [
    "settings",
    "get_session",
    "setup_logging",
    # Exceptions
    "CatalogSyncError",
    "ExtractionError",
    "BulkOperationError",
    "APIExtractionError",
    "ResourceNotFoundError",
    "ExtractionTimeoutError",
    "MalformedRecordError",
    "LoadError",
    "DatabaseError",
    "UpsertError",
    "BackupError",
    "SyncStateError",
    "SyncAlreadyRunningError",
    "InvalidRunTransitionError",
    "SyncRunNotFoundError",
    "SyncCancelledError",
    "RetryableError",
    "NonRetryableError",
    "NetworkError",
    "RateLimitError",
    "AuthenticationError",
    "AliasMappingError",
    "AliasNotFoundError",
    "CollectionNotFoundError",
]
