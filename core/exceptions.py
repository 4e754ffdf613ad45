"""
Custom exceptions for the ingestion pipeline with structured error context.

Every failure that ends a run is raised as one of these. Each exception
carries context information for debugging and for the operator-facing log.

Exception Hierarchy:
    PipelineException (base)
    ├── ConfigurationError
    ├── FetchError
    ├── ParseError
    └── PublishError

None of them is retried inside the pipeline: a failed run is re-invoked as a
whole by the external scheduler.
"""

from typing import Optional, Dict, Any
from datetime import datetime, timezone


class PipelineException(Exception):
    """
    Base exception for all pipeline errors.

    Attributes:
        message: Human-readable error message
        context: Additional context information (url, table, phase, etc.)
        original_exception: The original exception that was caught (if any)
    """

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[BaseException] = None
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


class ConfigurationError(PipelineException):
    """Raised for invalid or missing configuration."""
    pass


class FetchError(PipelineException):
    """
    Exception raised when a remote source cannot be retrieved.

    Context should include:
        - url: The URL that failed
        - status_code: Terminal HTTP status code (if applicable)
        - redirects: Number of redirects followed (if applicable)
    """
    pass


class ParseError(PipelineException):
    """
    Exception raised when source content has an unexpected shape.

    Context should include:
        - source_name: Name of the source being parsed
        - row / column: Position of the offending value (if applicable)
    """
    pass


class PublishError(PipelineException):
    """
    Exception raised when the snapshot swap fails.

    Context should include:
        - table_name: Logical table being published
        - phase: Protocol state reached before the failure
    """
    pass
