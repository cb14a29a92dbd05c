"""
Custom Exceptions for Arena Guard
"""

from typing import Any, Dict, Optional
from fastapi import status


class ArenaException(Exception):
    """Base exception for Arena Guard"""

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        error_code: str = "internal_error",
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)


class NotFoundException(ArenaException):
    """Resource not found exception"""

    def __init__(self, message: str = "Resource not found", details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            status_code=status.HTTP_404_NOT_FOUND,
            error_code="not_found",
            details=details,
        )


class ValidationException(ArenaException):
    """Validation error exception"""

    def __init__(self, message: str = "Validation error", details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            status_code=status.HTTP_400_BAD_REQUEST,
            error_code="validation_error",
            details=details,
        )


class UnauthorizedException(ArenaException):
    """
    Authentication error exception

    The message is fixed: callers must not learn which check failed.
    """

    def __init__(self):
        super().__init__(
            message="Unauthorized",
            status_code=status.HTTP_401_UNAUTHORIZED,
            error_code="unauthorized",
        )


class ForbiddenException(ArenaException):
    """Authorization error exception"""

    def __init__(self, message: str = "Forbidden", details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            status_code=status.HTTP_403_FORBIDDEN,
            error_code="forbidden",
            details=details,
        )


class GeoLookupError(Exception):
    """Raised by the geo client on timeout, transport error or bad payload"""
    pass


class NotificationDeliveryError(Exception):
    """Raised by a notification channel when a message was not accepted"""

    def __init__(self, channel: str, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.channel = channel
        self.status_code = status_code
