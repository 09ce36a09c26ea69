import enum

from shared.constants import Role

# ── Token lifetimes ───────────────────────────────────────────────────────────
ACCESS_TOKEN_EXPIRE_SECONDS: int = 86_400 * 7     # 7 days
REFRESH_TOKEN_EXPIRE_SECONDS: int = 86_400 * 30   # 30 days

# ── OTP / password reset ──────────────────────────────────────────────────────
OTP_LENGTH: int = 6
OTP_EXPIRE_MINUTES: int = 10
OTP_MAX_ATTEMPTS: int = 5
RESET_TOKEN_EXPIRE_MINUTES: int = 30
# Issued when random codes are disabled (development / test only).
FIXED_OTP_CODE: str = "123456"
# Normalized phone numbers shorter than this are rejected.
MIN_PHONE_DIGITS: int = 10

# ── Signing secret policy ─────────────────────────────────────────────────────
MIN_SECRET_LENGTH: int = 32
KNOWN_WEAK_SECRETS: frozenset[str] = frozenset(
    {"change-me", "changeme", "secret", "jwt-secret", "your-secret-key"}
)

# Roles that may log in with a phone OTP.  Password reset is open to all roles.
LOGIN_OTP_ROLES: frozenset[Role] = frozenset(
    {Role.PATIENT, Role.DOCTOR, Role.LABORATORY, Role.PHARMACY}
)


class TokenType(str, enum.Enum):
    ACCESS = "access"
    REFRESH = "refresh"


class RevocationReason(str, enum.Enum):
    LOGOUT = "logout"
    REFRESH = "refresh"     # old refresh token retired by rotation
    SECURITY = "security"
    MANUAL = "manual"
