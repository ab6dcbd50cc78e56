"""
auth/errors.py -- Failure taxonomy for the session lifecycle.

Two branches under AuthError:

  BusinessRuleError -- the request is wrong and retrying it unchanged will
      fail again (Conflict, InvalidCredentials, InvalidInput,
      InvalidRefreshToken, InvalidOrExpiredCode, NotFound).

  StorageUnavailable -- a store could not be reached or failed mid-query.
      The request itself may be fine; callers retry with backoff.

Every class carries a stable `code` tag. The API layer maps tags to HTTP
status codes in one table (api/main.py); nothing in auth/ knows about HTTP.

Layer rule: stdlib only.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class for every failure raised by the session lifecycle."""

    code = "auth_error"
    default_message = "Authentication error."
    retryable = False

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class BusinessRuleError(AuthError):
    """Terminal for the request. Do not retry."""


class Conflict(BusinessRuleError):
    code = "conflict"
    default_message = "A user with this email already exists."


class InvalidCredentials(BusinessRuleError):
    # Same message for unknown email and wrong password.
    code = "invalid_credentials"
    default_message = "Invalid credentials."


class InvalidInput(BusinessRuleError):
    code = "invalid_input"
    default_message = "Invalid input."

    def __init__(self, message: str | None = None, violations: list[str] | None = None) -> None:
        super().__init__(message)
        self.violations = list(violations or [])


class InvalidRefreshToken(BusinessRuleError):
    code = "invalid_refresh_token"
    default_message = "Invalid refresh token."


class InvalidOrExpiredCode(BusinessRuleError):
    code = "invalid_or_expired_code"
    default_message = "Invalid or expired one-time code."


class NotFound(BusinessRuleError):
    code = "not_found"
    default_message = "User not found."


class StorageUnavailable(AuthError):
    code = "storage_unavailable"
    default_message = "Storage is temporarily unavailable. Retry later."
    retryable = True
