"""
Error reporting for the AuctionZ session client.

This module turns API, network and authentication failures into
user-facing error records, keeps a bounded history of them and notifies
listeners, and logs the structured error behind each record.
"""

import json
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Dict, Any, Callable, List

from auctionz_shared.exceptions import AuctionzError, AuthenticationError, NetworkError, handle_exception
from auctionz_shared.logging_config import log_structured_error, AuditLogger
from auctionz_client.api_client import APIClientError

logger = logging.getLogger(__name__)

MAX_ERROR_HISTORY = 100


@dataclass
class AppError:
    """A user-facing error, warning or info record."""
    id: str
    type: str
    title: str
    message: str
    details: str = ""
    retryable: bool = False
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'type': self.type,
            'title': self.title,
            'message': self.message,
            'details': self.details,
            'retryable': self.retryable,
            'timestamp': self.timestamp.isoformat(),
        }


def _format_error_details(data: Any) -> str:
    if not data:
        return ""
    if isinstance(data, str):
        return data
    if isinstance(data, dict):
        if data.get('error'):
            return str(data['error'])
        if data.get('message'):
            return str(data['message'])
    return json.dumps(data, indent=2, default=str)


def _format_validation_errors(data: Dict[str, Any]) -> str:
    errors = data.get('errors') if data else None
    if not errors:
        return ""
    if isinstance(errors, dict):
        lines = []
        for name, field_errors in errors.items():
            if isinstance(field_errors, list):
                field_errors = ', '.join(str(e) for e in field_errors)
            lines.append(f"{name}: {field_errors}")
        return '\n'.join(lines)
    return str(errors)


class ErrorReporter:
    """
    Collects user-facing errors and notifies listeners of the current list.

    The newest record comes first; the history is capped at
    MAX_ERROR_HISTORY records.
    """

    def __init__(self, max_history: int = MAX_ERROR_HISTORY):
        self.max_history = max_history
        self._errors: List[AppError] = []
        self._listeners: List[Callable[[List[AppError]], None]] = []
        self._audit_logger = AuditLogger()

    def add_listener(self, listener: Callable[[List[AppError]], None]) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Callable[[List[AppError]], None]) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _notify_listeners(self) -> None:
        snapshot = list(self._errors)
        for listener in self._listeners:
            try:
                listener(snapshot)
            except Exception as e:
                logger.error(f"Error in error listener: {e}")

    def add_error(
        self,
        title: str,
        message: str,
        details: str = "",
        retryable: bool = False,
        error_type: str = "error"
    ) -> str:
        """
        Record a new error.

        Returns:
            The id of the new record
        """
        record = AppError(
            id=f"error_{uuid.uuid4().hex[:12]}",
            type=error_type,
            title=title,
            message=message,
            details=details,
            retryable=retryable
        )
        self._errors.insert(0, record)
        del self._errors[self.max_history:]
        self._notify_listeners()
        return record.id

    def remove_error(self, error_id: str) -> None:
        for index, record in enumerate(self._errors):
            if record.id == error_id:
                del self._errors[index]
                self._notify_listeners()
                return

    def clear_errors(self) -> None:
        self._errors = []
        self._notify_listeners()

    def get_errors(self) -> List[AppError]:
        return list(self._errors)

    def add_warning(self, title: str, message: str, details: str = "") -> str:
        return self.add_error(title, message, details, error_type="warning")

    def add_info(self, title: str, message: str, details: str = "") -> str:
        return self.add_error(title, message, details, error_type="info")

    def _log(self, error: Exception, context: Optional[Dict[str, Any]] = None) -> AuctionzError:
        structured = handle_exception(error, context)
        log_structured_error(logger, structured)
        self._audit_logger.log_error(structured)
        return structured

    def handle_api_error(self, error: Exception, context: Optional[str] = None) -> str:
        """
        Record a failed API call.

        Args:
            error: The exception raised by the gateway
            context: Short label of the failed operation

        Returns:
            The id of the new record
        """
        self._log(error, {'operation': context} if context else None)

        retryable = False
        details = ""

        if isinstance(error, AuthenticationError):
            message = "Authentication required"
            details = "Please log in to continue"
        elif isinstance(error, APIClientError) and error.status_code is not None:
            status = error.status_code
            data = error.response_data
            if status == 400:
                message = data.get('error') or "Invalid request"
                details = _format_error_details(data)
            elif status == 403:
                message = "Access denied"
                details = "You do not have permission to perform this action"
            elif status == 404:
                message = "Resource not found"
                details = "The requested resource could not be found"
            elif status == 422:
                message = "Validation error"
                details = _format_validation_errors(data)
            elif status == 429:
                message = "Too many requests"
                details = "Please wait a moment before trying again"
                retryable = True
            elif status == 500:
                message = "Server error"
                details = "Something went wrong on our end. Please try again later."
                retryable = True
            else:
                message = data.get('error') or f"Server error ({status})"
                details = _format_error_details(data)
                retryable = status >= 500
        elif isinstance(error, NetworkError):
            message = "Network error"
            details = "Please check your internet connection and try again"
            retryable = True
        else:
            message = str(error) or "An unexpected error occurred"

        return self.add_error(
            title=f"{context} Error" if context else "Error",
            message=message,
            details=details,
            retryable=retryable
        )

    def handle_auth_error(self, error: Exception) -> str:
        self._log(error)

        message = "Authentication failed"
        details = ""
        if isinstance(error, AuthenticationError):
            message = "Session expired"
            details = "Please log in again to continue"
        elif isinstance(error, APIClientError) and error.response_data.get('error'):
            message = error.response_data['error']

        return self.add_error(title="Authentication Error", message=message, details=details)

    def handle_validation_error(self, errors: Dict[str, List[str]]) -> str:
        details = '\n'.join(f"{name}: {', '.join(messages)}" for name, messages in errors.items())
        return self.add_error(
            title="Validation Error",
            message="Please fix the following errors:",
            details=details
        )
