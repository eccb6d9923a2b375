"""
Error taxonomy for the EventApp Telegram bridge.

Every failure that reaches a handler boundary is a BotError (or gets
reported as code "UNKNOWN"). The code travels to the user in diagnostic
messages and to Mini App clients in HTTP error bodies.
"""

from typing import Any, Optional


class BotError(Exception):
    """Base exception for all bridge errors."""

    default_code = "UNKNOWN"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to a dictionary for API responses."""
        return {
            "error": self.message,
            "code": self.code,
            "details": self.details,
        }


class ValidationError(BotError):
    """Bad user input (malformed email, missing fields)."""

    default_code = "VALIDATION_ERROR"


class LinkingError(BotError):
    """A link attempt was rejected; the dialog restarts from the email step."""


class AccountNotFound(LinkingError):
    """No EventApp user with the given email."""

    default_code = "ACCOUNT_NOT_FOUND"

    def __init__(self, email: str):
        super().__init__("User not found", details={"email": email})


class InvalidCredentials(LinkingError):
    """Password did not match the stored hash."""

    default_code = "INVALID_CREDENTIALS"

    def __init__(self, message: str = "Invalid password"):
        super().__init__(message)


class AccountAlreadyLinked(LinkingError):
    """The EventApp user is already linked to another Telegram account."""

    default_code = "ACCOUNT_ALREADY_LINKED"

    def __init__(self, user_id: str):
        super().__init__(
            "This EventApp account is already linked to another Telegram account",
            details={"user_id": user_id},
        )


class IdentityAlreadyLinked(LinkingError):
    """The Telegram account is already linked to a different EventApp user."""

    default_code = "IDENTITY_ALREADY_LINKED"

    def __init__(self, telegram_id: int):
        super().__init__(
            "This Telegram account is already linked to another EventApp account",
            details={"telegram_id": telegram_id},
        )


class StorageError(BotError):
    """Persistence layer unreachable or rejected a write."""

    default_code = "STORAGE_ERROR"


class UpstreamApiError(BotError):
    """The EventApp API call failed."""

    default_code = "UPSTREAM_API_ERROR"

    def __init__(
        self,
        message: str,
        url: str,
        status_code: Optional[int] = None,
    ):
        super().__init__(
            message,
            details={"url": url, "status_code": status_code},
        )
        self.url = url
        self.status_code = status_code


class AuthError(BotError):
    """Missing, malformed or forged Telegram init data."""

    default_code = "AUTH_ERROR"


def error_code(error: BaseException) -> str:
    """Code for any exception, "UNKNOWN" when it is not one of ours."""
    if isinstance(error, BotError):
        return error.code
    return getattr(error, "code", None) or "UNKNOWN"
