"""Categorized error handling and error statistics for the file manager core."""

import json
import logging
import traceback
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional


class ErrorCategory(Enum):
    """Categories of errors that can occur in the core."""
    CONNECTION = "connection"
    AUTHENTICATION = "authentication"
    FILE_OPERATION = "file_operation"
    TRANSFER = "transfer"
    ARCHIVE = "archive"
    ENCRYPTION = "encryption"
    CONFIGURATION = "configuration"
    UNSUPPORTED = "unsupported"
    UNKNOWN = "unknown"


class ErrorSeverity(Enum):
    """Severity levels for errors."""
    CRITICAL = "critical"  # Process cannot continue
    HIGH = "high"         # Operation failed
    MEDIUM = "medium"     # Operation degraded
    LOW = "low"           # Informational, system continues normally


@dataclass
class ErrorContext:
    """Context information for an error occurrence."""
    timestamp: datetime = field(default_factory=datetime.now)
    category: ErrorCategory = ErrorCategory.UNKNOWN
    severity: ErrorSeverity = ErrorSeverity.MEDIUM
    component: str = ""
    operation: str = ""
    error_message: str = ""
    exception_type: str = ""
    stack_trace: str = ""
    additional_data: Dict[str, Any] = field(default_factory=dict)


class ErrorHandler:
    """Error handler with categorized logging, statistics and optional persistence."""

    MAX_HISTORY = 1000

    def __init__(self, storage_path: Optional[str] = None):
        """Initialize the error handler.

        Args:
            storage_path: Directory for the JSONL error context log; nothing is
                persisted when omitted
        """
        self.logger = logging.getLogger(__name__)
        self.storage_path = Path(storage_path) if storage_path else None
        self.error_log_file: Optional[Path] = None

        if self.storage_path is not None:
            self.storage_path.mkdir(parents=True, exist_ok=True)
            self.error_log_file = self.storage_path / "error_context.jsonl"

        # Error tracking
        self.error_history: List[ErrorContext] = []
        self.error_counts: Dict[str, int] = {}
        self.last_error_times: Dict[str, datetime] = {}

        self.logger.debug("ErrorHandler initialized")

    def handle_error(self,
                     error: Exception,
                     category: ErrorCategory,
                     severity: ErrorSeverity,
                     component: str,
                     operation: str,
                     additional_data: Optional[Dict[str, Any]] = None) -> ErrorContext:
        """Handle an error with logging and context tracking.

        Args:
            error: The exception that occurred
            category: Category of the error
            severity: Severity level of the error
            component: Component where the error occurred
            operation: Operation being performed when error occurred
            additional_data: Additional context data (paths, hosts, ...)

        Returns:
            ErrorContext object with error details
        """
        context = ErrorContext(
            category=category,
            severity=severity,
            component=component,
            operation=operation,
            error_message=str(error),
            exception_type=type(error).__name__,
            stack_trace="".join(traceback.format_exception(type(error), error, error.__traceback__)),
            additional_data=additional_data or {},
        )

        self._log_error(context)
        self._track_error_statistics(context)
        self._store_error_context(context)

        self.error_history.append(context)
        if len(self.error_history) > self.MAX_HISTORY:
            self.error_history.pop(0)

        return context

    def _log_error(self, context: ErrorContext):
        """Log error with appropriate level and formatting."""
        log_message = (f"[{context.category.value.upper()}] {context.component}.{context.operation}: "
                       f"{context.error_message}")

        if context.additional_data:
            log_message += f" | Context: {context.additional_data}"

        if context.severity == ErrorSeverity.CRITICAL:
            self.logger.critical(log_message)
        elif context.severity == ErrorSeverity.HIGH:
            self.logger.error(log_message)
        elif context.severity == ErrorSeverity.MEDIUM:
            self.logger.warning(log_message)
        else:
            self.logger.info(log_message)

        if context.stack_trace:
            self.logger.debug(f"Stack trace for {context.component}.{context.operation}:\n{context.stack_trace}")

    def _track_error_statistics(self, context: ErrorContext):
        """Track error statistics for reporting."""
        error_key = f"{context.category.value}:{context.component}:{context.operation}"

        self.error_counts[error_key] = self.error_counts.get(error_key, 0) + 1
        self.last_error_times[error_key] = context.timestamp

        if self.error_counts[error_key] % 10 == 0:
            self.logger.warning(f"Error {error_key} has occurred {self.error_counts[error_key]} times")

    def _store_error_context(self, context: ErrorContext):
        """Append the error context to the JSONL log, if persistence is enabled."""
        if self.error_log_file is None:
            return
        try:
            error_data = {
                "timestamp": context.timestamp.isoformat(),
                "category": context.category.value,
                "severity": context.severity.value,
                "component": context.component,
                "operation": context.operation,
                "error_message": context.error_message,
                "exception_type": context.exception_type,
                "additional_data": context.additional_data,
            }
            with open(self.error_log_file, 'a', encoding='utf-8') as f:
                f.write(json.dumps(error_data, default=str) + "\n")
        except OSError as e:
            self.logger.warning(f"Failed to store error context: {e}")

    def get_error_statistics(self, hours: int = 24) -> Dict[str, Any]:
        """Get error statistics for the specified time period.

        Args:
            hours: Number of hours to look back

        Returns:
            Dictionary containing error statistics
        """
        cutoff_time = datetime.now() - timedelta(hours=hours)
        recent_errors = [e for e in self.error_history if e.timestamp >= cutoff_time]

        stats: Dict[str, Any] = {
            "total_errors": len(recent_errors),
            "time_period_hours": hours,
            "errors_by_category": {},
            "errors_by_severity": {},
            "errors_by_component": {},
        }

        for error in recent_errors:
            category = error.category.value
            stats["errors_by_category"][category] = stats["errors_by_category"].get(category, 0) + 1

            severity = error.severity.value
            stats["errors_by_severity"][severity] = stats["errors_by_severity"].get(severity, 0) + 1

            component = error.component
            stats["errors_by_component"][component] = stats["errors_by_component"].get(component, 0) + 1

        return stats


# Global error handler instance
_global_error_handler: Optional[ErrorHandler] = None


def get_error_handler(storage_path: Optional[str] = None) -> ErrorHandler:
    """Get the global error handler instance.

    Args:
        storage_path: Path to store error logs (only used on first call)

    Returns:
        Global ErrorHandler instance
    """
    global _global_error_handler

    if _global_error_handler is None:
        _global_error_handler = ErrorHandler(storage_path)

    return _global_error_handler


def handle_error(error: Exception,
                 category: ErrorCategory,
                 severity: ErrorSeverity,
                 component: str,
                 operation: str,
                 additional_data: Optional[Dict[str, Any]] = None) -> ErrorContext:
    """Convenience function to handle errors using the global error handler."""
    return get_error_handler().handle_error(
        error=error,
        category=category,
        severity=severity,
        component=component,
        operation=operation,
        additional_data=additional_data
    )
