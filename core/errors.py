"""
core/errors.py -- Application error taxonomy.

Every business-rule failure is an AppError subclass carrying an HTTP-equivalent
status code, a stable machine-readable code, and a human message. The API layer
renders them uniformly (see api/main.py); services never build HTTP responses.

Library exceptions (JWT, SQLAlchemy, Redis) are caught where they happen and
re-raised as one of these, so nothing raw ever leaks to a client.

Layer rule: core/ is the kernel. This module may not import from api/, auth/,
or cache/.
"""

from __future__ import annotations


class AppError(Exception):
    """Base class for expected, client-visible failures."""

    status_code: int = 400
    code: str = "bad_request"
    message: str = "Bad request."

    def __init__(self, message: str | None = None, *, detail: str | None = None) -> None:
        self.message = message or self.message
        self.detail = detail
        super().__init__(self.message)


# ---------------------------------------------------------------------------
# Session / authentication failures
#
# All of these collapse to "log in again" on the client, except the two
# account-state errors which carry their own guidance.
# ---------------------------------------------------------------------------


class AuthRequired(AppError):
    status_code = 401
    code = "auth_required"
    message = "Authentication required."


class InvalidRefreshToken(AppError):
    status_code = 401
    code = "invalid_refresh_token"
    message = "Invalid refresh token, please log in again."


class SessionRevoked(AppError):
    status_code = 401
    code = "session_revoked"
    message = "Session has been revoked, please log in again."


class SessionTooOld(AppError):
    status_code = 401
    code = "session_too_old"
    message = "Session expired too long ago, please log in again."


class SessionExpired(AppError):
    status_code = 401
    code = "session_expired"
    message = "Session expired, please log in again."


class UserNotFound(AppError):
    status_code = 404
    code = "user_not_found"
    message = "User not found."


class AccountSuspended(AppError):
    status_code = 401
    code = "account_suspended"
    message = "Your account is currently suspended."


class AccountDeleted(AppError):
    status_code = 404
    code = "account_deleted"
    message = "Your account has been deleted."


# ---------------------------------------------------------------------------
# Account flow failures
# ---------------------------------------------------------------------------


class BadRequest(AppError):
    pass


class Conflict(AppError):
    status_code = 409
    code = "conflict"
    message = "Resource already exists."


class InvalidOtp(AppError):
    status_code = 401
    code = "invalid_otp"
    message = "Invalid or expired OTP."


class TooManyRequests(AppError):
    status_code = 429
    code = "too_many_requests"
    message = "Too many requests. Please try again later."


class OAuthFailed(AppError):
    status_code = 401
    code = "oauth_failed"
    message = "Could not authenticate with the identity provider."
