# authguard/services/delivery.py
"""
Shared result type and OTP message bodies for the delivery channels.
"""

from typing import NamedTuple

CHANNEL_EMAIL = "email"
CHANNEL_CHATBOT = "chatbot"
CHANNEL_BOTH = "both"
CHANNELS = (CHANNEL_EMAIL, CHANNEL_CHATBOT, CHANNEL_BOTH)

ACTION_TITLES = {
    "login": "Login Verification",
    "database_change": "Database Modification",
    "page_change": "Page Modification",
    "route_change": "Route Modification",
}
DEFAULT_ACTION_TITLE = "Action Verification"


class DeliveryResult(NamedTuple):
    """Outcome of handing a message to one delivery channel."""

    success: bool
    error: str | None = None


def action_title(purpose: str) -> str:
    return ACTION_TITLES.get(purpose, DEFAULT_ACTION_TITLE)


def build_otp_text(code: str, purpose: str, ttl_minutes: int) -> str:
    """Plain-text OTP body shared by the chat-bot message and the email text part."""
    return (
        f"{action_title(purpose)}\n\n"
        f"Your verification code is: {code}\n\n"
        f"This code will expire in {ttl_minutes} minutes.\n\n"
        "If you did not initiate this action, please secure your account immediately."
    )
