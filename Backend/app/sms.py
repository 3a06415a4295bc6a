"""
SMS sender utility using Twilio Programmable SMS.
"""

import asyncio
import logging

from twilio.base.exceptions import TwilioRestException
from twilio.rest import Client

from .core.config import get_settings

settings = get_settings()
logger = logging.getLogger(__name__)


def normalize_e164(phone: str) -> str:
    """Best-effort E.164 (+1...) formatting; US numbers without a prefix get +1."""
    if not phone:
        return phone

    cleaned = "".join(ch for ch in phone if ch.isdigit() or ch == "+")
    if not cleaned.startswith("+"):
        if cleaned.startswith("1") and len(cleaned) == 11:
            cleaned = f"+{cleaned}"
        else:
            cleaned = f"+1{cleaned}"
    return cleaned


def mask_phone(phone: str) -> str:
    return f"{phone[:6]}***" if phone else "<none>"


def is_sms_configured() -> bool:
    return bool(settings.twilio_account_sid and settings.twilio_auth_token and settings.twilio_from_number)


def _send_blocking(to_phone: str, body: str) -> str:
    client = Client(settings.twilio_account_sid, settings.twilio_auth_token)
    message = client.messages.create(
        body=body,
        from_=normalize_e164(settings.twilio_from_number),
        to=to_phone,
    )
    return message.sid


async def send_sms(to_phone: str, body: str) -> bool:
    """
    Send an SMS using Twilio.

    Returns:
        True if the SMS was accepted by Twilio, False otherwise.

    Note:
        Never raises. Missing configuration and Twilio errors are logged and
        reported as False so the caller decides what a failed send means.
    """
    if not is_sms_configured():
        logger.warning("Twilio SMS not configured. Skipping SMS send.")
        return False

    formatted = normalize_e164(to_phone)
    if not formatted:
        logger.error(f"Invalid phone number format: {mask_phone(to_phone)}")
        return False

    try:
        # The Twilio client is synchronous
        sid = await asyncio.to_thread(_send_blocking, formatted, body)
    except TwilioRestException as e:
        logger.error(f"Twilio API error sending SMS to {mask_phone(formatted)}: {e.code} - {e.msg}")
        return False
    except Exception as e:
        logger.exception(f"Unexpected error sending SMS to {mask_phone(formatted)}: {e}")
        return False

    logger.info(f"SMS sent successfully to {mask_phone(formatted)}. SID: {sid}")
    return True
