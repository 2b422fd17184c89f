"""
auth/errors.py -- Error taxonomy for the Session/Auth Service.

Every business-rule failure raised by auth/service.py is an AuthError
subclass. Each carries a stable machine-readable code, a human-readable
message, and the HTTP status the API layer should answer with. api/main.py
registers one exception handler for the base class, so routes never have to
translate these by hand.

None of these are retried. Database failures are not wrapped: they propagate
as-is and the API's catch-all handler turns them into a generic 500.

Layer rule: no imports from api/.
"""

from __future__ import annotations


class AuthError(Exception):
    code: str = "auth_error"
    status_code: int = 400
    default_message: str = "Authentication failed."

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class DuplicateEmail(AuthError):
    code = "duplicate_email"
    status_code = 409
    default_message = "User with this email already exists."


class InvalidCredentials(AuthError):
    """Raised for an unknown email AND for a wrong password.

    The message is identical in both cases so callers cannot tell which
    emails are registered. Do not split this into two errors.
    """

    code = "invalid_credentials"
    status_code = 401
    default_message = "Invalid email or password."


class AccountDeactivated(AuthError):
    code = "account_deactivated"
    status_code = 403
    default_message = "Account has been deactivated."


class InvalidOrExpiredToken(AuthError):
    code = "invalid_token"
    status_code = 401
    default_message = "Invalid or expired token."


class UserNotFound(AuthError):
    code = "user_not_found"
    status_code = 404
    default_message = "User not found."


class NoValidFields(AuthError):
    code = "no_valid_fields"
    status_code = 400
    default_message = "No valid fields to update."


class InvalidEmail(AuthError):
    code = "invalid_email"
    status_code = 400
    default_message = "Please provide a valid email."


class InvalidVerificationToken(AuthError):
    code = "invalid_verification_token"
    status_code = 400
    default_message = "Invalid or expired verification token."


class ProtectedAccount(AuthError):
    """Raised when an admin deletion targets another admin account."""

    code = "admin_protected"
    status_code = 403
    default_message = "Cannot delete admin accounts."
