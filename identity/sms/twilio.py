"""
Twilio Programmable Messaging — async SMS delivery via httpx.

We generate and verify our own OTPs; Twilio only carries the text message.
``send_sms`` returns a boolean result and never raises, so a Twilio outage is
logged by the caller instead of failing the request.
"""
from __future__ import annotations

import logging

import httpx

from identity.config import Settings

logger = logging.getLogger(__name__)
_MESSAGES_URL = "https://api.twilio.com/2010-04-01/Accounts/{sid}/Messages.json"


def is_configured(settings: Settings) -> bool:
    """Return True when all three Twilio messaging credentials are present."""
    return bool(
        settings.twilio_account_sid
        and settings.twilio_auth_token
        and settings.twilio_from_number
    )


def to_e164(phone: str, settings: Settings) -> str:
    """Prefix a 10-digit national number with the default country code."""
    digits = phone.lstrip("+")
    if len(digits) == 10:
        digits = f"{settings.sms_default_country_code}{digits}"
    return f"+{digits}"


async def send_sms(phone: str, body: str, settings: Settings) -> bool:
    """Send ``body`` to ``phone``.  Returns True on success, False on any failure."""
    if not is_configured(settings):
        logger.warning("Twilio is not configured — SMS to %s not sent", phone[-4:])
        return False

    url = _MESSAGES_URL.format(sid=settings.twilio_account_sid)
    try:
        async with httpx.AsyncClient(timeout=15.0) as client:
            r = await client.post(
                url,
                data={
                    "To": to_e164(phone, settings),
                    "From": settings.twilio_from_number,
                    "Body": body,
                },
                auth=(settings.twilio_account_sid, settings.twilio_auth_token),
            )
        if r.status_code >= 400:
            logger.error("Twilio send_sms error %s: %s", r.status_code, r.text[:300])
            return False
        return True
    except httpx.HTTPError as exc:
        logger.error("Twilio send_sms failed: %s", exc)
        return False
