"""Chat error taxonomy shared by the REST and real-time surfaces."""

from typing import Optional
from enum import Enum


class ErrorCategory(str, Enum):
    """Categories of errors for better handling."""
    VALIDATION = "validation"  # Input validation errors
    RATE_LIMIT = "rate_limit"  # Sender exceeded the admission window
    NOT_FOUND = "not_found"  # Referenced user or message absent
    AUTH_ERROR = "auth_error"  # Permission violations
    BUSINESS_LOGIC = "business_logic"  # Business rule violations
    UPSTREAM = "upstream"  # Store or provider failures


class ChatError(Exception):
    """Base exception for chat lifecycle failures."""
    code = "CHAT_ERROR"
    status_code = 400

    def __init__(self, message: str, category: ErrorCategory, retry_after: Optional[float] = None):
        self.message = message
        self.category = category
        self.retry_after = retry_after
        super().__init__(message)


class InvalidContent(ChatError):
    """Empty or oversized message content."""
    code = "INVALID_CONTENT"
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message, ErrorCategory.VALIDATION)


class RateLimited(ChatError):
    """Sender exceeded the message rate limit."""
    code = "RATE_LIMITED"
    status_code = 429

    def __init__(self, message: str = "Too many messages. Please slow down.", retry_after: Optional[float] = None):
        super().__init__(message, ErrorCategory.RATE_LIMIT, retry_after=retry_after)


class UnknownSender(ChatError):
    """Sender could not be resolved to a known user."""
    code = "UNKNOWN_SENDER"
    status_code = 404

    def __init__(self, message: str = "User authentication required"):
        super().__init__(message, ErrorCategory.NOT_FOUND)


class NotFound(ChatError):
    """Referenced message does not exist."""
    code = "NOT_FOUND"
    status_code = 404

    def __init__(self, message: str = "Message not found"):
        super().__init__(message, ErrorCategory.NOT_FOUND)


class NotOwner(ChatError):
    """Requester is not allowed to perform the operation."""
    code = "NOT_OWNER"
    status_code = 403

    def __init__(self, message: str = "You can only modify your own messages"):
        super().__init__(message, ErrorCategory.AUTH_ERROR)


class TooOld(ChatError):
    """Edit window has expired."""
    code = "TOO_OLD"
    status_code = 403

    def __init__(self, message: str = "Messages can only be edited shortly after sending"):
        super().__init__(message, ErrorCategory.BUSINESS_LOGIC)


class InvalidState(ChatError):
    """Transition attempted out of a terminal state (deleted or unsent)."""
    code = "INVALID_STATE"
    status_code = 409

    def __init__(self, message: str = "Message can no longer be modified"):
        super().__init__(message, ErrorCategory.BUSINESS_LOGIC)


class UpstreamUnavailable(ChatError):
    """Store or notification provider failure."""
    code = "UPSTREAM_UNAVAILABLE"
    status_code = 503

    def __init__(self, message: str = "Service temporarily unavailable"):
        super().__init__(message, ErrorCategory.UPSTREAM)
