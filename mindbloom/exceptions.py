"""
Standardized exception hierarchy for MindBloom
Provides rich context, consistent logging, and user-friendly error messages
"""

import asyncio
from datetime import datetime, timezone
from typing import Optional, Dict, Any
from uuid import uuid4
import logging

import psycopg

logger = logging.getLogger(__name__)


class MindBloomError(Exception):
    """
    Base exception for all MindBloom errors

    Provides:
    - Automatic timestamping
    - Request ID for tracing
    - User-friendly messages
    - Structured context
    - Automatic logging

    Example:
        raise MindBloomError(
            message="Failed to save journal entry",
            user_id="u-123",
            operation="record_journal_entry",
            context={"entry_id": "abc-123"}
        )
    """

    log_level = logging.ERROR

    def __init__(
        self,
        message: str,
        user_id: Optional[str] = None,
        request_id: Optional[str] = None,
        operation: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
        user_message: Optional[str] = None
    ):
        super().__init__(message)
        self.message = message
        self.user_id = user_id
        self.request_id = request_id or str(uuid4())
        self.operation = operation
        self.context = context or {}
        self.cause = cause
        self.user_message = user_message or "An error occurred. Please try again."
        self.timestamp = datetime.now(timezone.utc)

        # Auto-log on creation
        self._log_error()

    def _log_error(self) -> None:
        """Log error with full context"""
        log_data = {
            "error_type": self.__class__.__name__,
            "error_message": self.message,
            "request_id": self.request_id,
            "user_id": self.user_id,
            "operation": self.operation,
            "error_context": self.context,
            "timestamp": self.timestamp.isoformat()
        }

        if self.cause:
            log_data["cause"] = str(self.cause)
            logger.log(
                self.log_level,
                f"{self.__class__.__name__}: {self.message}",
                extra=log_data,
                exc_info=self.cause,
            )
        else:
            logger.log(self.log_level, f"{self.__class__.__name__}: {self.message}", extra=log_data)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize exception for API responses"""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "user_message": self.user_message,
            "request_id": self.request_id,
            "timestamp": self.timestamp.isoformat()
        }


# ==========================================
# Validation Errors (User Input)
# ==========================================

class ValidationError(MindBloomError):
    """
    Raised when input fails validation

    Examples:
    - Mood outside 1-10
    - Non-positive XP award
    - Challenge ending before it starts
    """

    log_level = logging.WARNING

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        **kwargs
    ):
        self.field = field
        self.value = value
        super().__init__(
            message=message,
            user_message=f"Invalid {field}: {message}" if field else message,
            context={"field": field, "value": value},
            **kwargs
        )


# ==========================================
# State Conflicts
# ==========================================

class ConflictError(MindBloomError):
    """
    Raised when an operation conflicts with the current state

    Examples:
    - Joining a challenge twice
    - Checking in twice on the same day
    - Initializing achievements that already exist
    - Creator leaving their own challenge
    """

    log_level = logging.WARNING

    def __init__(
        self,
        message: str,
        conflict: Optional[str] = None,
        **kwargs
    ):
        self.conflict = conflict
        super().__init__(
            message=message,
            user_message=message,
            context={"conflict": conflict, **(kwargs.pop("context", None) or {})},
            **kwargs
        )


class CapacityError(ConflictError):
    """Challenge has reached its maximum number of participants"""

    def __init__(
        self,
        message: str = "Challenge has reached maximum number of participants",
        max_participants: Optional[int] = None,
        **kwargs
    ):
        self.max_participants = max_participants
        super().__init__(
            message=message,
            conflict="capacity",
            context={"max_participants": max_participants},
            **kwargs
        )


# ==========================================
# Database Errors
# ==========================================

class DatabaseError(MindBloomError):
    """
    Base class for persistence-related errors
    """
    pass


class ConnectionError(DatabaseError):
    """Database connection failed"""

    def __init__(self, message: str = "Database connection failed", **kwargs):
        super().__init__(
            message=message,
            user_message="We're having trouble connecting to the database. Please try again in a moment.",
            **kwargs
        )


class PersistenceTimeoutError(DatabaseError):
    """A persistence call did not complete within its time budget"""

    def __init__(
        self,
        message: str = "Persistence call timed out",
        timeout: Optional[float] = None,
        **kwargs
    ):
        self.timeout = timeout
        super().__init__(
            message=message,
            user_message="The request took too long. Please try again.",
            context={"timeout": timeout},
            **kwargs
        )


class QueryError(DatabaseError):
    """Database query execution failed"""

    def __init__(
        self,
        message: str,
        query: Optional[str] = None,
        **kwargs
    ):
        self.query = query
        super().__init__(
            message=message,
            user_message="We encountered an issue saving your data. Please try again.",
            context={"query": query},
            **kwargs
        )


class ConcurrentModificationError(DatabaseError):
    """Stored version changed between read and write"""

    log_level = logging.WARNING

    def __init__(
        self,
        message: str,
        record_type: Optional[str] = None,
        record_id: Optional[str] = None,
        expected_version: Optional[int] = None,
        **kwargs
    ):
        self.record_type = record_type
        self.record_id = record_id
        self.expected_version = expected_version
        super().__init__(
            message=message,
            user_message="Your data changed while we were saving it. Please try again.",
            context={
                "record_type": record_type,
                "record_id": record_id,
                "expected_version": expected_version,
            },
            **kwargs
        )


class DuplicateKeyError(DatabaseError):
    """Unique constraint violated"""

    log_level = logging.WARNING

    def __init__(
        self,
        message: str,
        key: Optional[str] = None,
        **kwargs
    ):
        self.key = key
        super().__init__(
            message=message,
            user_message="That value is already in use.",
            context={"key": key},
            **kwargs
        )


class RecordNotFoundError(DatabaseError):
    """Requested record does not exist"""

    log_level = logging.WARNING

    def __init__(
        self,
        message: str,
        record_type: Optional[str] = None,
        record_id: Optional[str] = None,
        **kwargs
    ):
        self.record_type = record_type
        self.record_id = record_id
        super().__init__(
            message=message,
            user_message=f"{record_type or 'Record'} not found.",
            context={"record_type": record_type, "record_id": record_id},
            **kwargs
        )


# Failures a caller may retry
TRANSIENT_ERRORS = (ConnectionError, PersistenceTimeoutError, ConcurrentModificationError)


# ==========================================
# Authentication & Authorization
# ==========================================

class AuthenticationError(MindBloomError):
    """Authentication failed"""

    log_level = logging.WARNING

    def __init__(
        self,
        message: str = "Authentication failed",
        **kwargs
    ):
        super().__init__(
            message=message,
            user_message="Authentication failed. Please check your credentials.",
            **kwargs
        )


class AuthorizationError(MindBloomError):
    """User lacks permission for requested operation"""

    log_level = logging.WARNING

    def __init__(
        self,
        message: str = "Insufficient permissions",
        resource: Optional[str] = None,
        **kwargs
    ):
        self.resource = resource
        super().__init__(
            message=message,
            user_message=f"You don't have permission to access {resource or 'this resource'}.",
            context={"resource": resource},
            **kwargs
        )


# ==========================================
# Configuration Errors
# ==========================================

class ConfigurationError(MindBloomError):
    """System configuration is invalid or missing"""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        **kwargs
    ):
        self.config_key = config_key
        super().__init__(
            message=message,
            user_message="The system is not properly configured. Please contact support.",
            context={"config_key": config_key},
            **kwargs
        )


# ==========================================
# Helper Functions
# ==========================================

def wrap_external_exception(
    error: Exception,
    operation: str,
    user_id: Optional[str] = None,
    context: Optional[Dict[str, Any]] = None
) -> MindBloomError:
    """
    Wrap external exceptions (psycopg, asyncio timeouts) into our exception hierarchy

    Args:
        error: Original exception
        operation: What operation was being performed
        user_id: User ID if applicable
        context: Additional context

    Returns:
        Appropriate MindBloomError subclass

    Example:
        try:
            await cur.execute(query)
        except psycopg.Error as e:
            raise wrap_external_exception(e, operation="update_user", user_id="u-1")
    """
    if isinstance(error, MindBloomError):
        return error

    if isinstance(error, (asyncio.TimeoutError, TimeoutError)):
        return PersistenceTimeoutError(
            message=f"{operation} timed out",
            user_id=user_id,
            operation=operation,
            cause=error
        )
    elif isinstance(error, psycopg.errors.UniqueViolation):
        return DuplicateKeyError(
            message=f"Duplicate key in {operation}: {str(error)}",
            user_id=user_id,
            operation=operation,
            cause=error
        )
    elif isinstance(error, psycopg.OperationalError):
        return ConnectionError(
            message=f"Database connection failed: {str(error)}",
            user_id=user_id,
            operation=operation,
            cause=error
        )
    elif isinstance(error, psycopg.Error):
        return QueryError(
            message=f"Database query failed: {str(error)}",
            user_id=user_id,
            operation=operation,
            cause=error
        )

    # Generic fallback
    return MindBloomError(
        message=f"{operation} failed: {str(error)}",
        user_id=user_id,
        operation=operation,
        context=context,
        cause=error
    )
