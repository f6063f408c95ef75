"""
Custom Exception Classes for Social Relay

This module defines custom exceptions for consistent error responses on the
REST surface and for the client-side channel state machine.
"""

from enum import Enum
from typing import Any

from fastapi import status


class ErrorCode(str, Enum):
    """Machine-readable error codes returned in error responses."""

    AUTH_FAILED = "AUTH_FAILED"
    AUTH_INVALID_TOKEN = "AUTH_INVALID_TOKEN"
    AUTH_PERMISSION_DENIED = "AUTH_PERMISSION_DENIED"
    AUTH_USER_BANNED = "AUTH_USER_BANNED"
    RESOURCE_NOT_FOUND = "RESOURCE_NOT_FOUND"
    RESOURCE_USER_NOT_FOUND = "RESOURCE_USER_NOT_FOUND"
    RESOURCE_SUBSCRIPTION_NOT_FOUND = "RESOURCE_SUBSCRIPTION_NOT_FOUND"
    VALIDATION_FAILED = "VALIDATION_FAILED"
    SERVICE_ERROR = "SERVICE_ERROR"
    PUSH_NOT_CONFIGURED = "PUSH_NOT_CONFIGURED"
    CHANNEL_INVALID_TRANSITION = "CHANNEL_INVALID_TRANSITION"
    CHANNEL_UNAVAILABLE = "CHANNEL_UNAVAILABLE"
    INTERNAL_ERROR = "INTERNAL_ERROR"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


class RelayException(Exception):
    """Base exception class for all relay exceptions"""

    error_code: ErrorCode = ErrorCode.INTERNAL_ERROR

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)


# ============================================================================
# Authentication & Authorization Exceptions
# ============================================================================


class AuthenticationError(RelayException):
    """Raised when authentication fails"""

    error_code = ErrorCode.AUTH_FAILED

    def __init__(self, message: str = "Authentication failed", details: dict[str, Any] | None = None):
        super().__init__(message=message, status_code=status.HTTP_401_UNAUTHORIZED, details=details or {})


class InvalidTokenError(AuthenticationError):
    """Raised when JWT token is invalid or expired"""

    error_code = ErrorCode.AUTH_INVALID_TOKEN

    def __init__(self, message: str = "Invalid or malformed token"):
        super().__init__(message=message)


class AuthorizationError(RelayException):
    """Raised when user lacks permission for an action"""

    error_code = ErrorCode.AUTH_PERMISSION_DENIED

    def __init__(self, message: str = "You do not have permission to perform this action"):
        super().__init__(message=message, status_code=status.HTTP_403_FORBIDDEN)


class BannedUserError(AuthorizationError):
    """Raised when a banned user tries to use the API"""

    error_code = ErrorCode.AUTH_USER_BANNED

    def __init__(self, message: str = "Your account has been suspended. Contact an administrator."):
        super().__init__(message=message)
        self.details = {"banned": True}


# ============================================================================
# Resource Not Found Exceptions
# ============================================================================


class ResourceNotFoundError(RelayException):
    """Base class for resource not found errors"""

    error_code = ErrorCode.RESOURCE_NOT_FOUND

    def __init__(self, resource_type: str, resource_id: Any | None = None):
        message = f"{resource_type} not found"
        if resource_id is not None:
            message = f"{resource_type} with id '{resource_id}' not found"
        super().__init__(
            message=message,
            status_code=status.HTTP_404_NOT_FOUND,
            details={"resource_type": resource_type, "resource_id": resource_id},
        )


class UserNotFoundError(ResourceNotFoundError):
    """Raised when a user is not found"""

    error_code = ErrorCode.RESOURCE_USER_NOT_FOUND

    def __init__(self, user_id: Any | None = None):
        super().__init__(resource_type="User", resource_id=user_id)


class SubscriptionNotFoundError(ResourceNotFoundError):
    """Raised when a push subscription is not found"""

    error_code = ErrorCode.RESOURCE_SUBSCRIPTION_NOT_FOUND

    def __init__(self, endpoint: str | None = None):
        super().__init__(resource_type="Subscription", resource_id=endpoint)


# ============================================================================
# Validation & Service Exceptions
# ============================================================================


class ValidationError(RelayException):
    """Raised when input validation fails"""

    error_code = ErrorCode.VALIDATION_FAILED

    def __init__(self, message: str, field: str | None = None, details: dict[str, Any] | None = None):
        error_details = details or {}
        if field:
            error_details["field"] = field
        super().__init__(message=message, status_code=status.HTTP_400_BAD_REQUEST, details=error_details)


class ServiceError(RelayException):
    """Raised when a service layer operation fails"""

    error_code = ErrorCode.SERVICE_ERROR

    def __init__(self, message: str, service: str | None = None):
        details = {"service": service} if service else {}
        super().__init__(message=message, status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, details=details)


class PushConfigurationError(ServiceError):
    """Raised when a push provider is used without its credentials configured"""

    error_code = ErrorCode.PUSH_NOT_CONFIGURED

    def __init__(self, message: str = "VAPID keys are not configured", provider: str = "webpush"):
        super().__init__(message=message, service=provider)
        self.status_code = status.HTTP_503_SERVICE_UNAVAILABLE


# ============================================================================
# Client Channel Exceptions
# ============================================================================


class InvalidStateTransitionError(RelayException):
    """Raised when a channel state transition is not allowed"""

    error_code = ErrorCode.CHANNEL_INVALID_TRANSITION

    def __init__(self, current_state: str, target_state: str, channel: str = "channel"):
        super().__init__(
            message=f"Cannot transition {channel} from '{current_state}' to '{target_state}'",
            status_code=status.HTTP_409_CONFLICT,
            details={"channel": channel, "current_state": current_state, "target_state": target_state},
        )


class ChannelUnavailableError(RelayException):
    """Raised by start() when a channel could not connect within its retry budget"""

    error_code = ErrorCode.CHANNEL_UNAVAILABLE

    def __init__(self, channel: str, attempts: int, last_error: str | None = None):
        super().__init__(
            message=f"Channel '{channel}' unavailable after {attempts} attempt(s)",
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            details={"channel": channel, "attempts": attempts, "last_error": last_error},
        )


class ConnectionLostError(RelayException):
    """Raised by a client transport when the server side closed or the socket broke"""

    error_code = ErrorCode.CHANNEL_UNAVAILABLE

    def __init__(self, code: int | None = None, reason: str = ""):
        self.code = code
        self.reason = reason
        super().__init__(
            message=f"Connection lost (code {code}){': ' + reason if reason else ''}",
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            details={"code": code, "reason": reason},
        )
