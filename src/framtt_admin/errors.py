"""
Error taxonomy for authentication and impersonation.

Every error that leaves the core is an ``AuthError`` with a stable ``code``
and an HTTP status hint. Infrastructure exceptions are translated before
they cross the service boundary.
"""


class AuthError(Exception):
    """Base class for caller-visible authentication errors."""

    code = "AUTH_ERROR"
    status_code = 400
    default_message = "Authentication error"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> dict[str, str]:
        return {"code": self.code, "message": self.message}


# Auth-time errors


class InvalidCredentials(AuthError):
    code = "INVALID_CREDENTIALS"
    status_code = 401
    default_message = "Invalid credentials"


class AccountInactive(AuthError):
    code = "ACCOUNT_INACTIVE"
    status_code = 401
    default_message = "Account is not active"


class CredentialsUnavailable(AuthError):
    code = "CREDENTIALS_UNAVAILABLE"
    status_code = 503
    default_message = "Credential service unavailable"


# Token-time errors


class EncodingError(AuthError):
    code = "ENCODING_ERROR"
    status_code = 500
    default_message = "Token claims are malformed"


class InvalidSignature(AuthError):
    code = "INVALID_SIGNATURE"
    status_code = 401
    default_message = "Invalid token signature"


class Expired(AuthError):
    code = "TOKEN_EXPIRED"
    status_code = 401
    default_message = "Token has expired"


class Malformed(AuthError):
    code = "TOKEN_MALFORMED"
    status_code = 401
    default_message = "Token is malformed"


# Impersonation-time errors


class Unauthorized(AuthError):
    code = "UNAUTHORIZED"
    status_code = 403
    default_message = "Not authorized to impersonate"


class InvalidTarget(AuthError):
    code = "INVALID_TARGET"
    status_code = 403
    default_message = "Invalid impersonation target"


class AlreadyImpersonating(AuthError):
    code = "ALREADY_IMPERSONATING"
    status_code = 409
    default_message = "An impersonation session is already active"


class AuditUnavailable(AuthError):
    code = "AUDIT_UNAVAILABLE"
    status_code = 503
    default_message = "Audit log unavailable"


class NotImpersonating(AuthError):
    code = "NOT_IMPERSONATING"
    status_code = 400
    default_message = "Token is not an impersonation token"


class NoActiveSession(AuthError):
    code = "NO_ACTIVE_SESSION"
    status_code = 401
    default_message = "Impersonation session not found or already ended"


# Audit sink errors (never cross the controller boundary)


class AuditSinkError(Exception):
    """The audit sink could not complete an operation."""


class AuditConflict(AuditSinkError):
    """An open impersonation record already exists for the impersonator."""
