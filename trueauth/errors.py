"""Errors raised when a stored record cannot be found."""


class NotFoundError(Exception):
    """Base for every "not found" error."""

    message = "Not found"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.message)


class UserNotFoundError(NotFoundError):
    message = "User not found"


class IdentityNotFoundError(NotFoundError):
    message = "Identity not found"


class ConfirmationTokenNotFoundError(NotFoundError):
    message = "Confirmation Token not found"


class RefreshTokenNotFoundError(NotFoundError):
    message = "Refresh Token not found"


class InstanceNotFoundError(NotFoundError):
    message = "Instance not found"


class TotpSecretNotFoundError(NotFoundError):
    message = "Totp Secret not found"


def is_not_found_error(err: BaseException | None) -> bool:
    """Tell whether ``err`` represents a missing record."""
    return isinstance(err, NotFoundError)