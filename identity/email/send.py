"""
Email delivery orchestrator — SMTP (primary) with Brevo (fallback).

Delivery order:
  1. SMTP        — if configured
  2. Brevo REST  — if SMTP fails or is not configured

Returns whether any provider accepted the message; never raises.
"""
from __future__ import annotations

import logging

from identity.auth.utils import mask_email
from identity.config import Settings
from identity.email import brevo, smtp

logger = logging.getLogger(__name__)


async def deliver(to_email: str, subject: str, html: str, settings: Settings) -> bool:
    if smtp.is_configured(settings):
        if await smtp.deliver(to_email, subject, html, settings):
            return True
        logger.warning("SMTP failed for %s — falling back to Brevo", mask_email(to_email))

    if brevo.is_configured(settings):
        if await brevo.deliver(to_email, subject, html, settings):
            return True
        logger.error("Brevo fallback also failed for %s", mask_email(to_email))
        return False

    logger.warning("No email provider configured — skipping email to %s", mask_email(to_email))
    return False


async def send_password_reset_otp(
    to_email: str, code: str, role: str, expire_minutes: int, settings: Settings
) -> bool:
    return await deliver(
        to_email,
        "Your Healiinn password reset code",
        f"<p>Your {role} account password reset code is <strong>{code}</strong>.</p>"
        f"<p>The code expires in {expire_minutes} minutes. "
        "If you did not request a password reset, you can ignore this email.</p>",
        settings,
    )
