"""
Core utilities and configuration for the snapshot ingestion pipeline.

This package provides foundational components used throughout the pipeline:

Modules:
    config: Settings loaded once per run from environment variables
    database: Async SQLAlchemy engine creation (TLS, SQLite transactional DDL)
    exceptions: Custom exception hierarchy for error handling
    logging: Logging configuration

Usage:
    from core.config import load_settings
    from core.database import create_engine_from_settings
    from core.exceptions import FetchError, ParseError, PublishError
    from core.logging import setup_logging

Example:
    settings = load_settings()
    setup_logging(settings.LOG_LEVEL)
    engine = create_engine_from_settings(settings)
"""

__all__ = [
    "Settings",
    "load_settings",
    "create_engine_from_settings",
    "setup_logging",
    # Exceptions
    "PipelineException",
    "ConfigurationError",
    "FetchError",
    "ParseError",
    "PublishError",
]
