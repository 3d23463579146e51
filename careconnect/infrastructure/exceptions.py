"""
Custom Exceptions for CareConnect

Hierarchical exception classes for proper error handling across layers.
"""

from typing import Optional, Dict, Any


class CareConnectError(Exception):
    """Base exception for all CareConnect errors."""

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        original_error: Optional[Exception] = None
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.original_error = original_error

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for API responses."""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "details": self.details
        }


class ValidationError(CareConnectError):
    """Raised when input validation fails."""
    pass


class InvalidInputError(ValidationError):
    """Raised for empty message content or a malformed conversation key."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        original_error: Optional[Exception] = None
    ):
        details = {}
        if field:
            details["field"] = field
        super().__init__(message, details, original_error)


class ConversationClosedError(CareConnectError):
    """Raised when a message is sent to a closed conversation."""

    def __init__(self, conversation_id: str):
        super().__init__(
            "This conversation has been closed.",
            details={"conversation_id": conversation_id},
        )
        self.conversation_id = conversation_id


class DatabaseError(CareConnectError):
    """Raised when database operations fail."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        table: Optional[str] = None,
        original_error: Optional[Exception] = None
    ):
        details = {}
        if operation:
            details["operation"] = operation
        if table:
            details["table"] = table
        super().__init__(message, details, original_error)


class NotFoundError(DatabaseError):
    """Raised when a requested resource is not found."""
    pass


class DuplicateError(DatabaseError):
    """Raised when attempting to create a duplicate resource."""
    pass


class StoreUnavailableError(DatabaseError):
    """
    Raised on transient store failures (connection loss, timeouts).

    Callers should retry with backoff.
    """

    retryable = True

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["retryable"] = self.retryable
        return data


class ConfigurationError(CareConnectError):
    """Raised when configuration is missing or invalid."""

    def __init__(
        self,
        message: str,
        missing_keys: Optional[list] = None,
        original_error: Optional[Exception] = None
    ):
        details = {}
        if missing_keys:
            details["missing_keys"] = missing_keys
        super().__init__(message, details, original_error)
