"""Exception hierarchy for ContactLine.

Voice handlers translate these into spoken prompts; the JSON API renders
them as ``{"ok": false, "error": message}`` with ``status_code``.
"""

from typing import Optional


class ContactLineError(Exception):
    """Base exception for all ContactLine errors."""

    code: str = "UNKNOWN_ERROR"
    status_code: int = 500

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


# ===========================================
# Caller Errors
# ===========================================

class InvalidInput(ContactLineError):
    """Missing or unparseable webhook field."""
    code = "INVALID_INPUT"
    status_code = 400


class InvalidPin(ContactLineError):
    """PIN missing or wrong on the contact API."""
    code = "INVALID_PIN"
    status_code = 401


class AuthFailure(ContactLineError):
    """Wrong PIN entered during a call."""
    code = "AUTH_FAILURE"
    status_code = 401


class Lockout(AuthFailure):
    """PIN attempts exhausted for a call."""
    code = "LOCKOUT"
    status_code = 403


class SessionExpired(ContactLineError):
    """Session or last search missing when a step requires it."""
    code = "SESSION_EXPIRED"
    status_code = 409


class NotFound(ContactLineError):
    """Requested record does not exist for the configured secret."""
    code = "NOT_FOUND"
    status_code = 404


# ===========================================
# Backend Errors
# ===========================================

class StorageError(ContactLineError):
    """Supabase or carrier storage failure."""
    code = "STORAGE_ERROR"
    status_code = 500


class DirectoryUnavailable(StorageError):
    """Contact snapshots could not be read."""
    code = "DIRECTORY_UNAVAILABLE"
    status_code = 503
