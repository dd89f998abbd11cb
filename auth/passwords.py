"""
auth/passwords.py -- Credential hashing and verification.

Security design decisions:
  Argon2id via argon2-cffi for every digest this code base writes. Argon2 is
       memory-hard, so a stolen user table is expensive to brute-force even
       with GPUs. Cost parameters come from Settings (defaults: time_cost=2,
       memory_cost=19456 KiB, parallelism=1, hash_len=32).

  Legacy digests: accounts migrated from the previous system hold an unsalted
       SHA-256 hex digest. verify_password() still accepts those (compared with
       hmac.compare_digest) and needs_rehash() reports them, so the login path
       replaces them with an Argon2 digest the first time the password is seen.
       Nothing ever *writes* a legacy digest.

  verify_password() never raises for a malformed or unknown digest -- it
       returns False, and the caller treats that as bad credentials.

Layer rule: no imports from api/, web/, or membership/.
"""

from __future__ import annotations

import hashlib
import hmac
import re
from functools import lru_cache

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError, VerifyMismatchError

from core.config import get_settings

_LEGACY_DIGEST_RE = re.compile(r"^[0-9a-f]{64}$")


@lru_cache
def _hasher() -> PasswordHasher:
    settings = get_settings()
    return PasswordHasher(
        time_cost=settings.argon2_time_cost,
        memory_cost=settings.argon2_memory_cost,
        parallelism=settings.argon2_parallelism,
        hash_len=32,
    )


def hash_password(plain: str) -> str:
    """Return an Argon2id PHC string for the given plaintext password."""
    return _hasher().hash(plain)


def legacy_digest(plain: str) -> str:
    """Return the unsalted SHA-256 hex digest used by the previous system."""
    return hashlib.sha256(plain.encode("utf-8")).hexdigest()


def is_legacy_digest(digest: str) -> bool:
    return bool(_LEGACY_DIGEST_RE.match(digest or ""))


def verify_password(plain: str, digest: str) -> bool:
    """Return True if the plaintext matches the stored digest."""
    if not digest:
        return False
    if is_legacy_digest(digest):
        return hmac.compare_digest(legacy_digest(plain), digest)
    try:
        return _hasher().verify(digest, plain)
    except (VerifyMismatchError, VerificationError, InvalidHashError):
        return False


def needs_rehash(digest: str) -> bool:
    """Return True if the digest should be replaced on the next successful login."""
    if is_legacy_digest(digest):
        return True
    try:
        return _hasher().check_needs_rehash(digest)
    except InvalidHashError:
        return True


# Timing equalization dummy digest.
# Computed once at module load so the first login attempt is not measurably
# slower than subsequent ones. authenticate() verifies against it when the
# account does not exist so response time does not reveal which usernames
# are registered.
DUMMY_HASH: str = hash_password("membership_timing_dummy")
