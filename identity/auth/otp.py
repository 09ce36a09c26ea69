"""
One-time codes and reset tokens.

Pure functions apart from the hashing primitive.  Nothing here touches the
database; the flows in ``service.py`` own persistence.
"""
from __future__ import annotations

import secrets
from datetime import datetime, timedelta

from identity.auth.constants import FIXED_OTP_CODE, OTP_LENGTH
from identity.auth.utils import hash_secret, utcnow, verify_secret


def generate_code(*, random_codes: bool) -> str:
    """
    Return a 6-digit numeric code.

    With ``random_codes`` off (development / test) the fixed code is returned so
    the OTP can be entered without an SMS round-trip.  Otherwise the code is
    drawn uniformly from 000000-999999 with the ``secrets`` CSPRNG.
    """
    if not random_codes:
        return FIXED_OTP_CODE
    return f"{secrets.randbelow(10 ** OTP_LENGTH):0{OTP_LENGTH}d}"


def hash_code(code: str) -> str:
    return hash_secret(code)


def verify_code(code: str, code_hash: str | None) -> bool:
    return verify_secret(code, code_hash)


def expiry_timestamp(minutes: int, now: datetime | None = None) -> datetime:
    return (now or utcnow()) + timedelta(minutes=minutes)


def generate_reset_token() -> str:
    # 32 random bytes → 64 hex chars (256 bits).  A capability, not a signed token.
    return secrets.token_hex(32)
