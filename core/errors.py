"""
core/errors.py -- Error taxonomy for the identity core.

Every outcome the core refuses is an AuthError subclass. Each carries:
  status  -- HTTP-style status the transport layer should answer with.
  code    -- stable machine-readable code (AUTH_*, VRFY_*, VALD_*, USER_*, SRVR_*).
  message -- public message, safe to show to the caller.

None of these are retried internally. Authentication failures are kept
deliberately generic so a caller cannot tell which check failed.

Layer rule: core/ is the kernel. This module may not import from auth/.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class for every refusal the identity core can return."""

    status: int = 400
    code: str = "SRVR_UNKNOWN"
    message: str = "Request could not be completed."

    def __init__(self, message: str | None = None) -> None:
        if message is not None:
            self.message = message
        super().__init__(self.message)

    def to_dict(self) -> dict:
        """Outward error shape handed to the transport layer."""
        return {"success": False, "message": self.message, "errorCode": self.code}


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------


class AuthenticationError(AuthError):
    status = 401


class InvalidCredentials(AuthenticationError):
    code = "AUTH_INVALID_CREDENTIALS"
    message = "Invalid credentials"


class Unauthenticated(AuthenticationError):
    code = "AUTH_UNAUTHENTICATED"
    message = "Authentication required"


class InvalidToken(AuthenticationError):
    status = 400
    code = "AUTH_INVALID_TOKEN"
    message = "Invalid or expired token"


class TokenExpired(AuthenticationError):
    status = 400
    code = "AUTH_TOKEN_EXPIRED"
    message = "Token has expired"


class AccountSuspended(AuthError):
    status = 403
    code = "AUTH_ACCOUNT_SUSPENDED"
    message = "Account is suspended. Please contact support."


class AccountLocked(AuthError):
    status = 403
    code = "AUTH_ACCOUNT_LOCKED"
    message = "Account is locked. Please contact support."


# ---------------------------------------------------------------------------
# Authorization
# ---------------------------------------------------------------------------


class AuthorizationError(AuthError):
    status = 403


class InsufficientRole(AuthorizationError):
    code = "AUTH_INSUFFICIENT_PERMISSIONS"
    message = "Insufficient permissions"


class SelfModification(AuthorizationError):
    code = "AUTH_SELF_MODIFICATION"
    message = "Cannot perform this operation on your own account"


# ---------------------------------------------------------------------------
# Conflict / not found / rate limiting
# ---------------------------------------------------------------------------


class DuplicateIdentity(AuthError):
    status = 409

    _CODES = {
        "email": "AUTH_EMAIL_EXISTS",
        "username": "AUTH_USERNAME_EXISTS",
        "phone": "AUTH_PHONE_EXISTS",
    }

    def __init__(self, field: str) -> None:
        self.field = field
        self.code = self._CODES.get(field, "AUTH_IDENTITY_EXISTS")
        label = "Phone number" if field == "phone" else field.capitalize()
        super().__init__(f"{label} already exists")


class AccountNotFound(AuthError):
    status = 404
    code = "USER_NOT_FOUND"
    message = "User not found"


class RateLimited(AuthError):
    status = 429
    code = "VRFY_RATE_LIMIT_EXCEEDED"
    message = "Please wait before requesting another verification"


# ---------------------------------------------------------------------------
# Verification workflow
# ---------------------------------------------------------------------------


class VerificationError(AuthError):
    status = 400


class AlreadyVerified(VerificationError):
    code = "VRFY_ALREADY_VERIFIED"
    message = "Already verified"


class NoCodeFound(VerificationError):
    code = "VRFY_NO_CODE_FOUND"
    message = "No verification code found. Please request a new code."


class CodeExpired(VerificationError):
    code = "VRFY_CODE_EXPIRED"
    message = "Verification code has expired"


class TooManyAttempts(VerificationError):
    code = "VRFY_TOO_MANY_ATTEMPTS"
    message = "Too many failed attempts. Please request a new code."


class InvalidCode(VerificationError):
    code = "VRFY_INVALID_CODE"

    def __init__(self, remaining: int) -> None:
        self.remaining = remaining
        super().__init__(f"Invalid verification code. {remaining} attempts remaining.")


class InvalidVerificationToken(VerificationError):
    code = "VRFY_INVALID_TOKEN"
    message = "Invalid verification token"


class VerificationTokenExpired(VerificationError):
    code = "VRFY_TOKEN_EXPIRED"
    message = "Verification token has expired"


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


class ValidationError(AuthError):
    status = 400
    code = "VALD_INVALID_INPUT"
    message = "Invalid input"


class InvalidPassword(ValidationError):
    code = "VALD_INVALID_PASSWORD"
    message = "Password is required"


class PasswordUnchanged(ValidationError):
    code = "VALD_INVALID_PASSWORD"
    message = "New password must be different from current password"


class InvalidRole(ValidationError):
    code = "VALD_INVALID_ROLE"
    message = "Role must be an integer between 1 and 5"


class InvalidStatus(ValidationError):
    message = "Invalid account status"


class NothingToUpdate(ValidationError):
    code = "VALD_MISSING_FIELDS"
    message = "No fields to update"


class AlreadyDeleted(ValidationError):
    message = "User is already deleted"


# ---------------------------------------------------------------------------
# Server
# ---------------------------------------------------------------------------


class ServerError(AuthError):
    status = 500


class TransactionFailed(ServerError):
    code = "SRVR_TRANSACTION_FAILED"
    message = "Server error - contact support"


class DeliveryFailed(ServerError):
    code = "SRVR_DELIVERY_FAILED"
    message = "Failed to deliver message"
