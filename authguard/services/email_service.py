# authguard/services/email_service.py
"""
Email service for sending transactional emails.
Supports Mailgun API.
"""

import logging

import httpx

from authguard.core.effective_settings import DeliverySettings
from authguard.services.delivery import DeliveryResult, action_title, build_otp_text

logger = logging.getLogger(__name__)


async def send_email(
    delivery_settings: DeliverySettings,
    to_email: str,
    subject: str,
    html_content: str,
    text_content: str | None = None,
) -> DeliveryResult:
    """
    Send an email using Mailgun API.

    Never raises for delivery problems; the result carries the error instead.
    """
    if not delivery_settings.email_configured:
        logger.warning(f"Mailgun not configured. Would have sent email to {to_email}: {subject}")
        return DeliveryResult(False, "Email delivery is not configured")

    try:
        async with httpx.AsyncClient(timeout=delivery_settings.timeout_seconds) as client:
            response = await client.post(
                f"{delivery_settings.mailgun_api_base_url}/{delivery_settings.mailgun_domain}/messages",
                auth=("api", delivery_settings.mailgun_api_key or ""),
                data={
                    "from": (
                        f"{delivery_settings.mailgun_from_name} "
                        f"<{delivery_settings.mailgun_from_email}>"
                    ),
                    "to": to_email,
                    "subject": subject,
                    "text": text_content or "",
                    "html": html_content,
                },
            )

            if response.status_code == 200:
                logger.info(f"Email sent successfully to {to_email}: {subject}")
                return DeliveryResult(True)

            logger.error(f"Mailgun API error: {response.status_code} - {response.text}")
            return DeliveryResult(False, f"Mailgun API error: {response.status_code}")

    except httpx.HTTPError as e:
        logger.error(f"Failed to send email to {to_email}: {e}", exc_info=True)
        return DeliveryResult(False, f"Email transport error: {e.__class__.__name__}")


async def send_otp_email(
    delivery_settings: DeliverySettings,
    to_email: str,
    code: str,
    purpose: str,
    ttl_minutes: int,
) -> DeliveryResult:
    """Send a verification code email."""
    title = action_title(purpose)
    subject = f"Your verification code: {title}"

    html_content = f"""
    <html>
    <body style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
        <div style="padding: 30px; background: #f9fafb;">
            <h2 style="color: #1f2937;">{title}</h2>
            <p style="color: #4b5563; line-height: 1.6;">Your verification code is:</p>
            <p style="font-size: 32px; font-weight: bold; letter-spacing: 6px; text-align: center;">
                {code}
            </p>
            <p style="color: #6b7280; font-size: 14px;">
                This code will expire in {ttl_minutes} minutes.
            </p>
            <p style="color: #6b7280; font-size: 14px;">
                If you did not initiate this action, please secure your account immediately.
            </p>
        </div>
    </body>
    </html>
    """

    text_content = build_otp_text(code, purpose, ttl_minutes)

    return await send_email(delivery_settings, to_email, subject, html_content, text_content)
