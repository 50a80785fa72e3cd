# authguard/exceptions.py
from typing import Any


class AuthGuardError(Exception):
    """Base exception for errors that are rendered as an HTTP error response."""

    status_code: int = 400
    code: str = "AUTH_ERROR"
    message: str = "Request could not be processed."

    def __init__(self, message: str | None = None) -> None:
        if message is not None:
            self.message = message
        super().__init__(self.message)

    def extra(self) -> dict[str, Any]:
        """Additional fields merged into the JSON error body."""
        return {}

    def headers(self) -> dict[str, str] | None:
        return None


class MissingIdentifierError(AuthGuardError):
    """Raised when a guarded request carries no email/username."""

    status_code = 400
    code = "MISSING_EMAIL"
    message = "Email is required"


class AbusePreventionError(AuthGuardError):
    """Base for rejections issued by the brute-force guard before any credential check."""

    retry_after_seconds: int | None = None

    def headers(self) -> dict[str, str] | None:
        if self.retry_after_seconds is None:
            return None
        return {"Retry-After": str(self.retry_after_seconds)}


class IpBlockedError(AbusePreventionError):
    """Raised when the client IP exceeded the failed-attempt threshold in the rolling window."""

    status_code = 429
    code = "IP_BLOCKED"
    message = "Too many failed attempts from this IP address. Please try again later."

    def __init__(self, retry_after_seconds: int) -> None:
        super().__init__()
        self.retry_after_seconds = retry_after_seconds

    def extra(self) -> dict[str, Any]:
        return {"retry_after": self.retry_after_seconds}


class AccountLockedError(AbusePreventionError):
    """Raised when the targeted account is inside its lockout window."""

    status_code = 423
    code = "ACCOUNT_LOCKED"

    def __init__(self, minutes_remaining: int) -> None:
        super().__init__(
            "Account is locked due to too many failed login attempts. "
            f"Please try again in {minutes_remaining} minutes."
        )
        self.minutes_remaining = minutes_remaining
        self.retry_after_seconds = minutes_remaining * 60

    def extra(self) -> dict[str, Any]:
        return {"minutes_remaining": self.minutes_remaining}


class AuthenticationError(AuthGuardError):
    """
    Bad credential or bad OTP.

    The message and code are identical whatever the real cause (unknown
    account, wrong password, inactive account, wrong/expired/used OTP).
    """

    status_code = 401
    code = "INVALID_CREDENTIALS"
    message = "Invalid credentials"

    def __init__(self) -> None:
        super().__init__()


class OtpDeliveryError(AuthGuardError):
    """Raised when no delivery channel accepted the OTP."""

    status_code = 502
    code = "OTP_DELIVERY_FAILED"
    message = "Failed to send verification code"


class InfrastructureError(Exception):
    """A backing store or collaborator is unreachable. Never surfaced as an auth failure."""

    pass
