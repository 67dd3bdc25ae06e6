"""Typed errors raised by the activity and report services.

The HTTP layer maps each class to a status code through ``status_code``;
callers distinguish failures by type, never by message text.
"""

from __future__ import annotations


class ActivityLogError(Exception):
    """Base class for all errors the core raises on purpose."""

    status_code = 500
    code = "error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(ActivityLogError):
    """Malformed time or date, missing or unknown field, rejected value."""

    status_code = 400
    code = "validation_error"


class UnsupportedFormatError(ValidationError):
    """Requested report encoding is not available for this report flavor."""

    code = "unsupported_format"


class ConflictError(ActivityLogError):
    """Candidate interval overlaps another non-submitted activity."""

    status_code = 400
    code = "schedule_conflict"


class PermissionDeniedError(ActivityLogError):
    """Caller is neither the owner nor an authorized supervisor."""

    status_code = 403
    code = "permission_denied"


class InvalidStateError(ActivityLogError):
    """Illegal lifecycle transition, e.g. editing a submitted activity."""

    status_code = 400
    code = "invalid_state"


class NotFoundError(ActivityLogError):
    """Referenced record is absent, or a date-range report came out empty."""

    status_code = 404
    code = "not_found"
