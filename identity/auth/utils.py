import re
from datetime import datetime, timezone

from passlib.context import CryptContext

# Argon2 for both account passwords and OTP codes.
context = CryptContext(schemes=["argon2"], deprecated="auto")

_NON_DIGITS = re.compile(r"\D")


def hash_secret(secret: str) -> str:
    return context.hash(secret)


def verify_secret(plain: str, hashed: str | None) -> bool:
    if not hashed:
        return False
    try:
        return context.verify(plain, hashed)
    except ValueError:
        # Stored value is not a recognisable hash.
        return False


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def normalize_phone(raw: str | None) -> str:
    """Strip everything but digits, then drop a single leading trunk-prefix 0."""
    digits = _NON_DIGITS.sub("", raw or "")
    if digits.startswith("0"):
        digits = digits[1:]
    return digits


def normalize_email(raw: str) -> str:
    return raw.strip().lower()


def mask_phone(phone: str) -> str:
    return f"{'*' * max(len(phone) - 4, 0)}{phone[-4:]}"


def mask_email(email: str) -> str:
    local, _, domain = email.partition("@")
    return f"{local[:1]}***@{domain}" if domain else "***"
