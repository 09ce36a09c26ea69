"""
Identity service — OTP notification dispatch.

One ``Notifier`` is constructed per app and stored on ``app.state``.  Both send
methods are best-effort: they run inside FastAPI BackgroundTasks, never raise,
and log any delivery failure.  The stored challenge does not depend on them.
"""
from __future__ import annotations

import logging

from shared.constants import Role

from identity.auth.utils import mask_email, mask_phone
from identity.config import Settings
from identity.email import send as email_send
from identity.sms import twilio

logger = logging.getLogger(__name__)


class Notifier:
    def __init__(self, settings: Settings) -> None:
        self.settings = settings

    async def send_otp_sms(self, phone: str, code: str, role: Role) -> None:
        provider = self.settings.sms_provider.strip().lower()
        body = (
            f"Your Healiinn {Role(role).value} login code is {code}. "
            f"It expires in {self.settings.otp_expire_minutes} minutes."
        )
        try:
            if provider == "twilio":
                if not await twilio.send_sms(phone, body, self.settings):
                    logger.error("OTP SMS to %s was not delivered", mask_phone(phone))
                return
            if provider == "none" and not self.settings.is_production:
                logger.info("SMS provider disabled; OTP for %s (%s) is %s", mask_phone(phone), role, code)
                return
            logger.error("SMS provider %r cannot deliver OTP to %s", provider, mask_phone(phone))
        except Exception:
            logger.exception("OTP SMS dispatch to %s failed", mask_phone(phone))

    async def send_otp_email(self, email: str, code: str, role: Role) -> None:
        try:
            delivered = await email_send.send_password_reset_otp(
                email,
                code,
                Role(role).value,
                self.settings.otp_expire_minutes,
                self.settings,
            )
            if not delivered:
                logger.error("Password reset OTP email to %s was not delivered", mask_email(email))
        except Exception:
            logger.exception("Password reset OTP email to %s failed", mask_email(email))
