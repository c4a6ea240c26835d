"""API key secrets — generation, hashing, format checks, comparison.

Learn: An API key looks like ``tg_live_<48 hex chars>``:
- ``tg_`` marks the string as one of ours, so a bearer token carrying it
  is routed to the API-key path (and never silently treated as a session)
- ``live``/``test`` distinguishes production keys from sandbox keys
- 24 random bytes from ``secrets`` = 192 bits of entropy

Only the SHA-256 of the secret is stored. SHA-256 (not bcrypt) is right
here: the secret is high-entropy random data, so there is nothing to
brute-force, and the hash must be an exact-match index key that is cheap
to compute on every request.
"""

import hashlib
import hmac
import re
import secrets
from dataclasses import dataclass
from typing import Literal

KeyKind = Literal["live", "test"]

KEY_NAMESPACE = "tg"
RANDOM_BYTES = 24
DISPLAY_PREFIX_LENGTH = 12

_FORMAT = re.compile(rf"^{KEY_NAMESPACE}_(live|test)_[a-f0-9]{{{RANDOM_BYTES * 2}}}$")


@dataclass(frozen=True)
class GeneratedSecret:
    """A freshly issued secret. ``secret`` must leave the process exactly once."""

    secret: str
    hash: str
    prefix: str

    def __repr__(self) -> str:
        return f"GeneratedSecret(prefix={self.prefix!r}, hash={self.hash[:8]}...)"


def hash_secret(secret: str) -> str:
    """Deterministic SHA-256 hex digest of a secret."""
    return hashlib.sha256(secret.encode("utf-8")).hexdigest()


def generate(kind: KeyKind = "live") -> GeneratedSecret:
    """Issue a new API key secret with its hash and display prefix."""
    if kind not in ("live", "test"):
        raise ValueError(f"Unknown key kind: {kind!r}")
    secret = f"{KEY_NAMESPACE}_{kind}_{secrets.token_hex(RANDOM_BYTES)}"
    return GeneratedSecret(
        secret=secret,
        hash=hash_secret(secret),
        prefix=secret[:DISPLAY_PREFIX_LENGTH],
    )


def validate_format(secret: str) -> bool:
    """Cheap structural check, run before any hashing or lookup."""
    return bool(_FORMAT.fullmatch(secret))


def looks_like_credential(material: str) -> bool:
    """True when the caller *meant* to send an API key.

    A value with our namespace prefix that then fails ``validate_format``
    is a malformed key and must be rejected, not retried as a session.
    """
    return material.startswith(f"{KEY_NAMESPACE}_")


def display_prefix(secret: str) -> str:
    """Non-secret prefix, safe for logs and UIs."""
    return secret[:DISPLAY_PREFIX_LENGTH]


def constant_time_equals(a: str, b: str) -> bool:
    """Compare two shared secrets without leaking where they differ.

    Length is not secret, so unequal lengths short-circuit.
    """
    a_bytes = a.encode("utf-8")
    b_bytes = b.encode("utf-8")
    if len(a_bytes) != len(b_bytes):
        return False
    return hmac.compare_digest(a_bytes, b_bytes)
