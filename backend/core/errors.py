"""
Error taxonomy shared by the services and the HTTP layer.

Every error carries the HTTP status code it maps to, so route handlers can
surface the narrowest correct status without inspecting error types.
"""


class AccountsError(Exception):
    """Base exception for account and subscription errors."""

    status_code: int = 500

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class ValidationError(AccountsError):
    """Raised when input is malformed or unrecognized."""

    status_code = 400


class UnsupportedEventError(ValidationError):
    """Raised for well-formed webhook events that we deliberately ignore."""

    pass


class AuthError(AccountsError):
    """Raised when a bearer token is missing or invalid."""

    status_code = 401


class ForbiddenError(AccountsError):
    """Raised when the caller is not allowed to perform an operation."""

    status_code = 403


class NotFoundError(AccountsError):
    """Raised when a user does not exist in the metadata store."""

    status_code = 404


class ConflictError(AccountsError):
    """Raised when a business rule is violated (seats, double subscriptions).

    Defaults to 409; seat-lock rejections use 403.
    """

    status_code = 409


class UpstreamError(AccountsError):
    """Raised when the metadata store or a payment provider fails."""

    status_code = 502


class TeamUpdateError(UpstreamError):
    """Raised after a team fan-out completes with one or more failed items."""

    def __init__(self, message: str, errors: list[BaseException]):
        super().__init__(message)
        self.errors = errors
