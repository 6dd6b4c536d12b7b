"""
Error Handler for the forum core

Provides the forum error taxonomy and centralized error handling with
categorization, logging, and optional user-facing notifications.
Handles permission, lookup, delivery, storage and validation errors.
"""

import logging
import traceback
from enum import Enum
from typing import Optional, Callable
from dataclasses import dataclass


logger = logging.getLogger(__name__)


class ErrorCategory(Enum):
    """Error categories for classification."""
    PERMISSION = "permission"
    NOT_FOUND = "not_found"
    DELIVERY = "delivery"
    STORAGE = "storage"
    VALIDATION = "validation"
    UNKNOWN = "unknown"


class ErrorSeverity(Enum):
    """Error severity levels."""
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


@dataclass
class ErrorContext:
    """Context information for an error."""
    category: ErrorCategory
    severity: ErrorSeverity
    operation: str
    user_message: str
    technical_details: str
    member_id: Optional[int] = None
    forum_id: Optional[int] = None
    thread_id: Optional[int] = None


# Custom Exception Classes

class ForumError(Exception):
    """Base exception for forum errors."""

    def __init__(self, message: str, category: ErrorCategory = ErrorCategory.UNKNOWN):
        super().__init__(message)
        self.category = category


class PermissionDeniedError(ForumError):
    """A write operation was refused by the access control evaluator."""

    def __init__(self, message: str):
        super().__init__(message, ErrorCategory.PERMISSION)


class NotFoundError(ForumError):
    """A referenced forum, thread, post or member does not exist."""

    def __init__(self, message: str):
        super().__init__(message, ErrorCategory.NOT_FOUND)


class DeliveryError(ForumError):
    """A single notification could not be delivered."""

    def __init__(self, message: str):
        super().__init__(message, ErrorCategory.DELIVERY)


class StorageError(ForumError):
    """Storage operation errors."""

    def __init__(self, message: str):
        super().__init__(message, ErrorCategory.STORAGE)


class DatabaseError(StorageError):
    """Database operation failed."""
    pass


class IntegrityViolationError(StorageError):
    """A cascade or reparent would have left inconsistent rows behind."""
    pass


class AttachmentError(StorageError):
    """Attachment storage failed or the file was rejected."""
    pass


class ValidationError(ForumError):
    """Data validation errors."""

    def __init__(self, message: str):
        super().__init__(message, ErrorCategory.VALIDATION)


class ErrorHandler:
    """
    Global error handler for the forum core.

    Provides centralized error handling with:
    - Error categorization (permission, not found, delivery, storage, validation)
    - Severity classification
    - User-friendly error messages
    - Detailed logging for debugging
    - Notification callbacks for front-end integration

    Usage:
        error_handler = ErrorHandler()
        error_handler.set_notification_callback(flash_message)

        try:
            # Some operation
            pass
        except Exception as e:
            error_handler.handle_error(e, "operation_name")
    """

    def __init__(self):
        """Initialize error handler."""
        self._notification_callback: Optional[Callable] = None
        self._error_count = 0

    def set_notification_callback(self, callback: Callable):
        """
        Set callback for displaying notifications to the user.

        Args:
            callback: Function(title: str, content: str, severity: ErrorSeverity)
        """
        self._notification_callback = callback

    def handle_error(
        self,
        error: Exception,
        context: str,
        member_id: Optional[int] = None,
        forum_id: Optional[int] = None,
        thread_id: Optional[int] = None,
        show_notification: bool = True
    ) -> ErrorContext:
        """
        Handle an error with appropriate categorization and response.

        Args:
            error: The exception that occurred
            context: Description of the operation that failed
            member_id: Optional member ID if the error relates to a member
            forum_id: Optional forum ID if the error relates to a forum
            thread_id: Optional thread ID if the error relates to a thread
            show_notification: Whether to show user notification (default: True)

        Returns:
            ErrorContext with categorized error information
        """
        self._error_count += 1

        if isinstance(error, ForumError):
            category = error.category
        else:
            category = self._categorize_error(error)

        severity = self._determine_severity(error, category)
        user_message = self._generate_user_message(error, category, context)
        technical_details = self._get_technical_details(error)

        error_context = ErrorContext(
            category=category,
            severity=severity,
            operation=context,
            user_message=user_message,
            technical_details=technical_details,
            member_id=member_id,
            forum_id=forum_id,
            thread_id=thread_id
        )

        self._log_error(error_context)

        if show_notification and self._notification_callback:
            self._show_notification(error_context)

        return error_context

    def _categorize_error(self, error: Exception) -> ErrorCategory:
        """
        Categorize an error based on its type and message.

        Args:
            error: The exception to categorize

        Returns:
            ErrorCategory
        """
        error_type = type(error).__name__.lower()
        error_msg = str(error).lower()

        if any(keyword in error_type or keyword in error_msg for keyword in [
            'permission', 'denied', 'forbidden', 'unauthorized'
        ]):
            return ErrorCategory.PERMISSION

        if any(keyword in error_type or keyword in error_msg for keyword in [
            'smtp', 'mail', 'sendgrid', 'delivery', 'timeout', 'connection'
        ]):
            return ErrorCategory.DELIVERY

        if any(keyword in error_type or keyword in error_msg for keyword in [
            'database', 'storage', 'disk', 'file', 'sqlite', 'integrity'
        ]):
            return ErrorCategory.STORAGE

        if isinstance(error, ValueError):
            return ErrorCategory.VALIDATION

        return ErrorCategory.UNKNOWN

    def _determine_severity(
        self,
        error: Exception,
        category: ErrorCategory
    ) -> ErrorSeverity:
        """
        Determine the severity of an error.

        Args:
            error: The exception
            category: Error category

        Returns:
            ErrorSeverity
        """
        # Orphaned rows are never acceptable
        if isinstance(error, IntegrityViolationError):
            return ErrorSeverity.CRITICAL

        if category == ErrorCategory.STORAGE:
            return ErrorSeverity.ERROR

        # A single failed delivery leaves the rest of the batch intact
        if category == ErrorCategory.DELIVERY:
            return ErrorSeverity.WARNING

        if category in (ErrorCategory.PERMISSION, ErrorCategory.NOT_FOUND, ErrorCategory.VALIDATION):
            return ErrorSeverity.INFO

        return ErrorSeverity.ERROR

    def _generate_user_message(
        self,
        error: Exception,
        category: ErrorCategory,
        context: str
    ) -> str:
        """
        Generate a user-friendly error message.

        Args:
            error: The exception
            category: Error category
            context: Operation context

        Returns:
            User-friendly error message
        """
        if category == ErrorCategory.PERMISSION:
            return "You do not have permission to do that."
        elif category == ErrorCategory.NOT_FOUND:
            return "The requested content could not be found."
        elif category == ErrorCategory.DELIVERY:
            return "A notification e-mail could not be delivered."
        elif category == ErrorCategory.STORAGE:
            return self._generate_storage_message(error, context)
        elif category == ErrorCategory.VALIDATION:
            return f"Invalid input: {error}"
        else:
            return f"An error occurred during {context}. Please try again."

    def _generate_storage_message(self, error: Exception, context: str) -> str:
        """Generate user message for storage errors."""
        if isinstance(error, AttachmentError):
            return "The attachment could not be stored."
        elif isinstance(error, IntegrityViolationError):
            return "The operation was aborted to keep forum data consistent."
        elif isinstance(error, DatabaseError):
            return "Database operation failed."
        else:
            return "Failed to save data. Please try again later."

    def _get_technical_details(self, error: Exception) -> str:
        """
        Get technical details for logging.

        Args:
            error: The exception

        Returns:
            Technical details string
        """
        details = [
            f"Exception Type: {type(error).__name__}",
            f"Message: {str(error)}",
            "Traceback:",
            "".join(traceback.format_exception(type(error), error, error.__traceback__))
        ]
        return "\n".join(details)

    def _log_error(self, error_context: ErrorContext):
        """
        Log error with appropriate level.

        Args:
            error_context: Error context information
        """
        log_message = (
            f"[{error_context.category.value.upper()}] "
            f"{error_context.operation}: {error_context.user_message}"
        )

        extra_info = []
        if error_context.member_id is not None:
            extra_info.append(f"member_id={error_context.member_id}")
        if error_context.forum_id is not None:
            extra_info.append(f"forum_id={error_context.forum_id}")
        if error_context.thread_id is not None:
            extra_info.append(f"thread_id={error_context.thread_id}")

        if extra_info:
            log_message += f" ({', '.join(extra_info)})"

        if error_context.severity == ErrorSeverity.CRITICAL:
            logger.critical(log_message)
            logger.critical(f"Technical details:\n{error_context.technical_details}")
        elif error_context.severity == ErrorSeverity.ERROR:
            logger.error(log_message)
            logger.debug(f"Technical details:\n{error_context.technical_details}")
        elif error_context.severity == ErrorSeverity.WARNING:
            logger.warning(log_message)
            logger.debug(f"Technical details:\n{error_context.technical_details}")
        else:
            logger.info(log_message)

    def _show_notification(self, error_context: ErrorContext):
        """
        Show notification to user.

        Args:
            error_context: Error context information
        """
        title_map = {
            ErrorCategory.PERMISSION: "Permission Denied",
            ErrorCategory.NOT_FOUND: "Not Found",
            ErrorCategory.DELIVERY: "Delivery Problem",
            ErrorCategory.STORAGE: "Storage Error",
            ErrorCategory.VALIDATION: "Invalid Input",
            ErrorCategory.UNKNOWN: "Error"
        }
        title = title_map.get(error_context.category, "Error")

        try:
            self._notification_callback(
                title,
                error_context.user_message,
                error_context.severity
            )
        except Exception as e:
            logger.error(f"Failed to show notification: {e}")

    def get_error_count(self) -> int:
        """
        Get total number of errors handled.

        Returns:
            Error count
        """
        return self._error_count

    def reset_error_count(self):
        """Reset error counter."""
        self._error_count = 0


# Global error handler instance
_global_error_handler: Optional[ErrorHandler] = None


def get_error_handler() -> ErrorHandler:
    """
    Get the global error handler instance.

    Returns:
        Global ErrorHandler instance
    """
    global _global_error_handler
    if _global_error_handler is None:
        _global_error_handler = ErrorHandler()
    return _global_error_handler


def set_error_handler(handler: ErrorHandler):
    """
    Set the global error handler instance.

    Args:
        handler: ErrorHandler instance to use globally
    """
    global _global_error_handler
    _global_error_handler = handler
