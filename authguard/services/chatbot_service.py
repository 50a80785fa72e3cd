# authguard/services/chatbot_service.py
"""
Chat-bot delivery channel over the Telegram Bot API.
"""

import logging

import httpx

from authguard.core.effective_settings import DeliverySettings
from authguard.services.delivery import DeliveryResult, build_otp_text

logger = logging.getLogger(__name__)


async def send_chatbot_message(
    delivery_settings: DeliverySettings,
    bot_token: str | None,
    chat_id: str | int | None,
    text: str,
) -> DeliveryResult:
    """
    Post a message to a chat through the bot's sendMessage method.

    Returns a failed DeliveryResult (never raises) when the destination is not
    configured, the HTTP call fails, or Telegram answers ok=false.
    """
    if not bot_token or not chat_id:
        logger.warning("Chat-bot destination not configured; message not sent.")
        return DeliveryResult(False, "Chat-bot destination is not configured")

    url = f"{delivery_settings.telegram_api_base_url}/bot{bot_token}/sendMessage"
    try:
        async with httpx.AsyncClient(timeout=delivery_settings.timeout_seconds) as client:
            response = await client.post(url, json={"chat_id": chat_id, "text": text})
    except httpx.HTTPError as e:
        # The URL embeds the bot token; log the class only
        logger.error(f"Chat-bot transport error for chat {chat_id}: {e.__class__.__name__}")
        return DeliveryResult(False, f"Chat-bot transport error: {e.__class__.__name__}")

    try:
        data = response.json()
    except ValueError:
        data = {}

    if response.status_code != 200 or not data.get("ok"):
        description = data.get("description") or f"HTTP {response.status_code}"
        logger.error(f"Chat-bot API error for chat {chat_id}: {description}")
        return DeliveryResult(False, f"Chat-bot API error: {description}")

    logger.info(f"Chat-bot message delivered to chat {chat_id}")
    return DeliveryResult(True)


async def send_otp_chatbot(
    delivery_settings: DeliverySettings,
    bot_token: str | None,
    chat_id: str | int | None,
    code: str,
    purpose: str,
    ttl_minutes: int,
) -> DeliveryResult:
    return await send_chatbot_message(
        delivery_settings, bot_token, chat_id, build_otp_text(code, purpose, ttl_minutes)
    )
