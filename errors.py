"""
errors.py
Domain errors raised by the membership engine.

Each error carries the HTTP status a transport layer would map it to; the
engine itself never looks at it.
"""

from __future__ import annotations


class MembershipError(Exception):
    http_status = 500
    retryable = False

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFound(MembershipError):
    """Member, service plan or extension request does not exist."""

    http_status = 404


class Conflict(MembershipError):
    """Duplicate attendance for the day or duplicate pending extension request."""

    http_status = 409


class InvalidState(MembershipError):
    """Action not allowed from the member's (or request's) current status."""

    http_status = 400


class InvalidArgument(MembershipError):
    """Malformed date, unknown status value or missing required field."""

    http_status = 400


class StoreTimeout(MembershipError):
    """The store did not answer within the configured timeout; safe to retry."""

    http_status = 503
    retryable = True
