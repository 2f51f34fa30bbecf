"""
Error taxonomy for record lifecycle, permission and sync failures.

Every error carries the kind surfaced to the presentation layer, the record it
concerns (when there is one) and whether the sync layer may retry it.
"""

import traceback
from datetime import datetime
from typing import Any, Dict, Optional


class ErrorCategory:
    """Error categories used for logging and HTTP translation."""
    PERMISSION = "permission"
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    CONCURRENCY = "concurrency"
    STATE = "state"
    NETWORK = "network"


class RecordError(Exception):
    """Base exception for lifecycle and sync errors."""

    error_kind = "RecordError"
    category = ErrorCategory.STATE
    retryable = False

    def __init__(
        self,
        message: str,
        record_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None
    ):
        super().__init__(message)
        self.message = message
        self.record_id = record_id
        self.details = details or {}
        self.original_exception = original_exception
        self.timestamp = datetime.utcnow()

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for logging and API payloads."""
        return {
            'errorKind': self.error_kind,
            'message': self.message,
            'category': self.category,
            'recordId': self.record_id,
            'retryable': self.retryable,
            'details': self.details,
            'timestamp': self.timestamp.isoformat(),
            'traceback': traceback.format_exc() if self.original_exception else None
        }


class PermissionDenied(RecordError):
    """Role, scope or lifecycle state forbids the operation. Never retried."""
    error_kind = "PermissionDenied"
    category = ErrorCategory.PERMISSION


class ValidationError(RecordError):
    """Malformed input; the caller must fix it."""
    error_kind = "ValidationError"
    category = ErrorCategory.VALIDATION


class NotFound(RecordError):
    """Record is missing locally or vanished remotely."""
    error_kind = "NotFound"
    category = ErrorCategory.NOT_FOUND


class StaleWrite(RecordError):
    """The caller's edit count no longer matches the stored one."""
    error_kind = "StaleWrite"
    category = ErrorCategory.CONCURRENCY

    def __init__(
        self,
        message: str,
        record_id: Optional[str] = None,
        expected_edit_count: Optional[int] = None,
        actual_edit_count: Optional[int] = None,
        **kwargs
    ):
        details = kwargs.pop('details', None) or {}
        details.update({
            'expected_edit_count': expected_edit_count,
            'actual_edit_count': actual_edit_count
        })
        super().__init__(message, record_id=record_id, details=details, **kwargs)
        self.expected_edit_count = expected_edit_count
        self.actual_edit_count = actual_edit_count


class InvalidState(RecordError):
    """The record's lifecycle state does not allow the transition."""
    error_kind = "InvalidState"
    category = ErrorCategory.STATE


class TransientNetworkError(RecordError):
    """The remote store could not be reached; retried with backoff."""
    error_kind = "TransientNetworkError"
    category = ErrorCategory.NETWORK
    retryable = True
