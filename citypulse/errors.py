from typing import Optional


class CityPulseError(Exception):
    """Base class for errors that map onto a ``{success: false, message}`` response."""

    status_code: int = 400
    default_message: str = "Bad request"

    def __init__(self, message: Optional[str] = None, *, errors: Optional[list] = None) -> None:
        self.message = message or self.default_message
        self.errors = errors or []
        super().__init__(self.message)


class ValidationError(CityPulseError):
    status_code = 400
    default_message = "Validation failed"


class DuplicateEmail(CityPulseError):
    status_code = 400
    default_message = "User already exists"


class InvalidCredentials(CityPulseError):
    status_code = 401
    default_message = "Invalid email or password"


class InvalidToken(CityPulseError):
    status_code = 401
    default_message = "Invalid or expired refresh token"


class Unauthorized(CityPulseError):
    status_code = 401
    default_message = "Not authorized"


class Forbidden(CityPulseError):
    status_code = 403
    default_message = "Not allowed"


class NotFound(CityPulseError):
    status_code = 404
    default_message = "Not found"


class UpstreamFailure(CityPulseError):
    """A database or media-storage call failed. The message shown to clients is fixed."""

    status_code = 500
    default_message = "Server error"


__all__ = [
    "CityPulseError",
    "ValidationError",
    "DuplicateEmail",
    "InvalidCredentials",
    "InvalidToken",
    "Unauthorized",
    "Forbidden",
    "NotFound",
    "UpstreamFailure",
]
