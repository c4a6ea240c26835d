"""Password hashing utilities.

Learn: Uses bcrypt for password hashing. bcrypt salts automatically and is
deliberately slow (rounds=12 ≈ 250ms), which is exactly what API keys do
NOT want — see auth/codec.py for why keys use plain SHA-256.

``verify_password_or_dummy`` burns the same bcrypt time when the account
does not exist, so login latency does not reveal which emails are
registered.
"""

from functools import lru_cache
from typing import Optional

import bcrypt

DEFAULT_ROUNDS = 12


def hash_password(password: str, rounds: int = DEFAULT_ROUNDS) -> str:
    """Hash a password with bcrypt. Passwords are truncated to 72 bytes."""
    pw_bytes = password.encode("utf-8")[:72]
    salt = bcrypt.gensalt(rounds=rounds)
    return bcrypt.hashpw(pw_bytes, salt).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """Verify a password against its bcrypt hash."""
    try:
        pw_bytes = password.encode("utf-8")[:72]
        return bcrypt.checkpw(pw_bytes, password_hash.encode("utf-8"))
    except (ValueError, TypeError):
        return False


@lru_cache(maxsize=1)
def _dummy_hash() -> str:
    return hash_password("tollgate-timing-equaliser")


def verify_password_or_dummy(password: str, password_hash: Optional[str]) -> bool:
    """Verify, or spend equivalent time and fail when there is no hash."""
    if not password_hash:
        verify_password(password, _dummy_hash())
        return False
    return verify_password(password, password_hash)
