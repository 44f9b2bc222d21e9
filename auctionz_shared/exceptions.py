"""
Structured exception hierarchy for the AuctionZ session client.

This module defines exceptions with error codes, context information,
and recovery suggestions for consistent error handling across the client.
"""

from datetime import datetime
from typing import Optional, Dict, Any, List
from enum import Enum


class ErrorCode(Enum):
    """Standardized error codes for the session client."""

    # Session lifecycle failures (1000-1099)
    NOT_AUTHENTICATED = "SESSION_1001"
    MISSING_CREDENTIAL = "SESSION_1002"
    TOKEN_REFRESH_FAILED = "SESSION_1003"
    SESSION_NOT_FOUND = "SESSION_1004"
    SESSION_INACTIVE = "SESSION_1005"
    SESSION_EXPIRED = "SESSION_1006"
    VALIDATION_BUSY = "SESSION_1007"

    # Authentication errors reported by the API (1100-1199)
    AUTH_INVALID_CREDENTIALS = "AUTH_1101"
    AUTH_TOKEN_REJECTED = "AUTH_1102"
    AUTH_ACCESS_DENIED = "AUTH_1103"

    # Network and communication errors (2000-2099)
    NETWORK_ERROR = "NETWORK_2001"
    NETWORK_TIMEOUT = "NETWORK_2002"

    # API errors (3000-3099)
    API_REQUEST_FAILED = "API_3001"
    API_NOT_FOUND = "API_3002"
    API_VALIDATION_FAILED = "API_3003"
    API_RATE_LIMITED = "API_3004"
    API_SERVER_ERROR = "API_3005"

    # Local storage errors (4000-4099)
    STORAGE_WRITE_FAILED = "STORAGE_4001"
    STORAGE_READ_FAILED = "STORAGE_4002"

    # Configuration errors (8000-8099)
    CONFIG_INVALID_VALUE = "CONFIG_8001"
    CONFIG_UNKNOWN_KEY = "CONFIG_8002"

    # Internal errors (9000-9099)
    INTERNAL_UNEXPECTED_ERROR = "INTERNAL_9001"


class ErrorSeverity(Enum):
    """Error severity levels for logging and handling."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class RecoveryAction(Enum):
    """Suggested recovery actions for errors."""
    RETRY = "retry"
    RETRY_WITH_BACKOFF = "retry_with_backoff"
    REFRESH_TOKEN = "refresh_token"
    LOGIN_AGAIN = "login_again"
    USER_INTERVENTION = "user_intervention"
    IGNORE = "ignore"


class AuctionzError(Exception):
    """
    Base exception class for all session client errors.

    Provides structured error information including error codes, context,
    and recovery suggestions for consistent error handling.
    """

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.INTERNAL_UNEXPECTED_ERROR,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        context: Optional[Dict[str, Any]] = None,
        recovery_actions: Optional[List[RecoveryAction]] = None,
        cause: Optional[Exception] = None,
        user_message: Optional[str] = None
    ):
        super().__init__(message)

        self.message = message
        self.error_code = error_code
        self.severity = severity
        self.context = context or {}
        self.recovery_actions = recovery_actions or []
        self.cause = cause
        self.user_message = user_message or message
        self.timestamp = datetime.now()

        if cause:
            self.context['cause_type'] = type(cause).__name__
            self.context['cause_message'] = str(cause)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary format for serialization."""
        return {
            'error': {
                'code': self.error_code.value,
                'message': self.message,
                'user_message': self.user_message,
                'severity': self.severity.value,
                'timestamp': self.timestamp.isoformat(),
                'context': self.context,
                'recovery_actions': [action.value for action in self.recovery_actions],
                'cause': {
                    'type': self.context.get('cause_type'),
                    'message': self.context.get('cause_message')
                } if self.cause else None
            }
        }


class AuthenticationError(AuctionzError):
    """Credentials or tokens rejected by the API."""

    def __init__(self, message: str, error_code: ErrorCode = ErrorCode.AUTH_TOKEN_REJECTED, **kwargs):
        kwargs.setdefault('user_message', "Please log in again to continue")
        super().__init__(
            message=message,
            error_code=error_code,
            severity=ErrorSeverity.HIGH,
            recovery_actions=[RecoveryAction.REFRESH_TOKEN, RecoveryAction.LOGIN_AGAIN],
            **kwargs
        )


class NetworkError(AuctionzError):
    """Network and communication related errors."""

    def __init__(self, message: str, error_code: ErrorCode = ErrorCode.NETWORK_ERROR, **kwargs):
        kwargs.setdefault('user_message', "Please check your internet connection and try again")
        super().__init__(
            message=message,
            error_code=error_code,
            severity=ErrorSeverity.MEDIUM,
            recovery_actions=[RecoveryAction.RETRY_WITH_BACKOFF],
            **kwargs
        )


class SessionError(AuctionzError):
    """Failure of the local or server-side session."""

    def __init__(self, message: str, error_code: ErrorCode, session_id: Optional[str] = None, **kwargs):
        context = kwargs.pop('context', None) or {}
        if session_id:
            context['session_id'] = session_id

        super().__init__(
            message=message,
            error_code=error_code,
            severity=ErrorSeverity.HIGH,
            recovery_actions=[RecoveryAction.LOGIN_AGAIN],
            context=context,
            **kwargs
        )


class TokenRefreshFailed(SessionError):
    """The access token could not be renewed; the session is unusable."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, ErrorCode.TOKEN_REFRESH_FAILED, **kwargs)


class TokenStorageError(AuctionzError):
    """Persisted credential could not be read or written."""

    def __init__(self, message: str, error_code: ErrorCode = ErrorCode.STORAGE_WRITE_FAILED, **kwargs):
        super().__init__(
            message=message,
            error_code=error_code,
            severity=ErrorSeverity.HIGH,
            recovery_actions=[RecoveryAction.USER_INTERVENTION],
            **kwargs
        )


class ConfigurationError(AuctionzError):
    """Configuration related errors."""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.CONFIG_INVALID_VALUE,
        config_key: Optional[str] = None,
        **kwargs
    ):
        context = kwargs.pop('context', None) or {}
        if config_key:
            context['config_key'] = config_key

        super().__init__(
            message=message,
            error_code=error_code,
            severity=ErrorSeverity.HIGH,
            recovery_actions=[RecoveryAction.USER_INTERVENTION],
            context=context,
            **kwargs
        )


def handle_exception(
    exception: Exception,
    context: Optional[Dict[str, Any]] = None,
    default_error_code: ErrorCode = ErrorCode.INTERNAL_UNEXPECTED_ERROR
) -> AuctionzError:
    """
    Convert a generic exception to a structured AuctionzError.

    Args:
        exception: The original exception
        context: Additional context information
        default_error_code: Default error code if specific mapping not found

    Returns:
        Structured AuctionzError
    """
    if isinstance(exception, AuctionzError):
        return exception

    exception_mapping = {
        ConnectionError: (ErrorCode.NETWORK_ERROR, NetworkError),
        TimeoutError: (ErrorCode.NETWORK_TIMEOUT, NetworkError),
        PermissionError: (ErrorCode.STORAGE_WRITE_FAILED, TokenStorageError),
        ValueError: (ErrorCode.CONFIG_INVALID_VALUE, ConfigurationError),
    }

    error_code, error_class = exception_mapping.get(
        type(exception),
        (default_error_code, AuctionzError)
    )

    return error_class(
        message=str(exception),
        error_code=error_code,
        context=context,
        cause=exception
    )
