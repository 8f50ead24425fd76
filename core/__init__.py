"""
Core utilities and configuration for the KZ records ingestion pipeline.

This package provides foundational components used throughout the pipeline:

Modules:
    config: Application configuration and environment variable management
    database: Async engine, session factory and startup connection check
    exceptions: Custom exception hierarchy for error handling
    logging: Logging configuration and proxy URL masking

Usage:
    from core.config import settings
    from core.database import create_engine, create_session_maker
    from core.exceptions import CheckpointError, WriteError
    from core.logging import setup_logging

Example:
    # Initialize logging
    setup_logging()

    # Build the session factory
    engine = create_engine()
    session_maker = create_session_maker(engine)
    async with session_maker() as session:
        # Perform database operations
        pass
"""

__all__ = [
    "settings",
    "create_engine",
    "create_session_maker",
    "check_connection",
    "dialect_insert",
    "setup_logging",
    "mask_url",
    # Exceptions
    "IngestionError",
    "FetchError",
    "RateLimitError",
    "TransientFetchError",
    "NormalizationError",
    "RecordRejectedError",
    "StorageError",
    "WriteError",
    "DatabaseConnectionError",
    "CheckpointError",
    "FatalIngestionError",
    "RetryableError",
    "NonRetryableError",
]
