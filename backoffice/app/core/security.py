"""
Password hashing (bcrypt) and opaque token helpers.
"""

import hashlib
import secrets

from passlib.context import CryptContext

from backoffice.app.core.config import settings

# One work factor for every path (registration, reset, change, seeding)
pwd_context = CryptContext(
    schemes=["bcrypt"],
    deprecated="auto",
    bcrypt__rounds=settings.bcrypt_rounds,
)


# ── Passwords ───────────────────────────────────────────────────────
def get_password_hash(plain: str) -> str:
    return pwd_context.hash(plain)


def verify_password(plain: str, hashed: str) -> bool:
    """Return False for a mismatch or an unparseable hash."""
    try:
        return pwd_context.verify(plain, hashed)
    except (ValueError, TypeError):
        return False


# ── Opaque tokens (reset links, email verification) ─────────────────
def generate_raw_token() -> str:
    """256 random bits, hex encoded."""
    return secrets.token_hex(32)


def digest_token(raw_token: str) -> str:
    """SHA-256 hex digest; the only form in which opaque tokens are persisted."""
    return hashlib.sha256(raw_token.encode("utf-8")).hexdigest()
