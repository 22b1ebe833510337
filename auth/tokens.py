"""
auth/tokens.py -- Secret hashing, random string generation and expiry math.

Security design decisions:
  Secrets: bcrypt, used directly. Both user passwords and client secrets are
       stored as bcrypt hashes; verify_secret() is the only comparison path.
       bcrypt.checkpw does the constant-time comparison.

  _DUMMY_HASH: computed once at module load. Callers that find no record
       for a username or client_id still run verify_secret() against it, so
       response time does not reveal whether the identifier exists.

  Random strings: secrets.choice over [A-Za-z0-9]. Codes and tokens are
       opaque, stored server-side and looked up by exact match, so they do
       not need to be signed -- only unguessable.

Layer rule: no imports from api/ or web/.
"""

from __future__ import annotations

import secrets
import string
from datetime import datetime, timedelta

import bcrypt

_ALPHABET = string.ascii_letters + string.digits


# ---------------------------------------------------------------------------
# Secret hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


MAX_SECRET_BYTES = 72


class SecretTooLong(ValueError):
    """A password or client secret exceeds bcrypt's 72-byte input limit."""


def _encode_secret(plain: str) -> bytes:
    encoded = plain.encode("utf-8")
    if len(encoded) > MAX_SECRET_BYTES:
        raise SecretTooLong(f"secrets are limited to {MAX_SECRET_BYTES} bytes of UTF-8")
    return encoded


def hash_secret(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password or client secret.

    Secrets longer than MAX_SECRET_BYTES (UTF-8) are refused with
    SecretTooLong rather than truncated, so nothing is ever stored that
    verify_secret() would compare differently.
    """
    return bcrypt.hashpw(_encode_secret(plain), bcrypt.gensalt()).decode("utf-8")


def verify_secret(plain: str, hashed: str) -> bool:
    """Return True if the plaintext matches the bcrypt hash.

    A malformed stored hash counts as a mismatch rather than an error. A
    plaintext over MAX_SECRET_BYTES is a mismatch too: hash_secret() never
    accepts one, so no stored hash can belong to it.
    """
    try:
        return bcrypt.checkpw(_encode_secret(plain), hashed.encode("utf-8"))
    except ValueError:
        return False


_DUMMY_HASH: str = hash_secret("tollgate_timing_dummy")


def burn_verification(plain: str) -> None:
    """Spend one bcrypt verification on a throwaway hash (timing equalization)."""
    verify_secret(plain, _DUMMY_HASH)


# ---------------------------------------------------------------------------
# Generation
# ---------------------------------------------------------------------------


def generate_random_string(length: int) -> str:
    """Return an unguessable alphanumeric string of exactly `length` characters."""
    return "".join(secrets.choice(_ALPHABET) for _ in range(length))


def now_plus_seconds(now: datetime, seconds: int) -> datetime:
    return now + timedelta(seconds=seconds)
