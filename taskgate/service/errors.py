from __future__ import annotations

from typing import Optional


class ServiceError(Exception):
    """Failure raised by a service call and rendered as the error envelope.

    Each subclass fixes an HTTP ``status_code`` and a stable ``error_code``.
    The message is what clients see in the ``error`` field of the envelope.
    """

    status_code: int = 400
    error_code: str = "validation_error"

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        detail: Optional[dict] = None,
        error_code: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if error_code is not None:
            self.error_code = error_code
        self.detail = detail or {}


class ValidationError(ServiceError):
    """Input rejected by a field rule (400)."""
    status_code = 400
    error_code = "validation_error"


class InvalidOrExpiredTokenError(ValidationError):
    """Password reset token unknown or past its expiry (400)."""
    error_code = "invalid_token"


class AuthenticationError(ServiceError):
    """Caller could not be identified (401)."""
    status_code = 401
    error_code = "unauthorized"


class InvalidCredentialsError(AuthenticationError):
    """Login or password check failed.

    The message is fixed so unknown-email and wrong-password failures are
    indistinguishable.
    """

    error_code = "invalid_credentials"

    def __init__(self, message: str = "Invalid credentials", **kwargs) -> None:
        super().__init__(message, **kwargs)


class UnauthenticatedError(AuthenticationError):
    """No usable credential on the request (401)."""

    def __init__(self, message: str = "Not authorized to access this route", **kwargs) -> None:
        super().__init__(message, **kwargs)


class ForbiddenError(ServiceError):
    """Caller is known but lacks the role or ownership required (403)."""
    status_code = 403
    error_code = "forbidden"


class NotFoundError(ServiceError):
    """Task or user id does not exist (404)."""
    status_code = 404
    error_code = "not_found"


class ConflictError(ServiceError):
    """Write collides with existing state (409)."""
    status_code = 409
    error_code = "conflict"


class DuplicateEmailError(ConflictError):
    error_code = "duplicate_email"

    def __init__(self, message: str = "Email already registered", **kwargs) -> None:
        super().__init__(message, **kwargs)


class ServerError(ServiceError):
    """Dependency or unexpected failure on our side (500)."""
    status_code = 500
    error_code = "server_error"


class StoreUnavailableError(ServerError):
    """Session store timed out or could not be reached."""
    error_code = "store_unavailable"

    def __init__(self, message: str = "Session store unavailable", **kwargs) -> None:
        super().__init__(message, **kwargs)


class DeliveryError(ServerError):
    """Outbound email could not be delivered."""
    error_code = "delivery_failed"

    def __init__(self, message: str = "Email could not be sent", **kwargs) -> None:
        super().__init__(message, **kwargs)


__all__ = [
    "ServiceError",
    "ValidationError",
    "InvalidOrExpiredTokenError",
    "AuthenticationError",
    "InvalidCredentialsError",
    "UnauthenticatedError",
    "ForbiddenError",
    "NotFoundError",
    "ConflictError",
    "DuplicateEmailError",
    "ServerError",
    "StoreUnavailableError",
    "DeliveryError",
]
