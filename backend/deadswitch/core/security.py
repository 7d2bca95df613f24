"""Credential hashing and token helpers (Argon2id, SHA-256, secrets)."""

import hashlib
import hmac
import secrets

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError, VerifyMismatchError

argon2_ph = PasswordHasher()

# EXPLANATION:
# Master password and recovery key are stored as Argon2id hashes.
# Management tokens are high-entropy random values, so a plain SHA-256 digest
# is enough to look them up without storing the token itself.
# The heartbeat token is stored as-is: it only authorises check-ins.


def get_password_hash(password: str) -> str:
    return argon2_ph.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    if not hashed_password:
        return False
    try:
        argon2_ph.verify(hashed_password, plain_password)
        return True
    except (VerifyMismatchError, VerificationError, InvalidHashError):
        return False


def generate_token(nbytes: int = 32) -> str:
    return secrets.token_urlsafe(nbytes)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()


def tokens_match(expected: str, provided: str) -> bool:
    if not expected or not provided:
        return False
    return hmac.compare_digest(expected.encode(), provided.encode())


def generate_recovery_key() -> str:
    """Recovery key shown once at setup, e.g. ``RK-1A2B3-C4D5E-F6A7B-C8D9E``."""
    raw = secrets.token_hex(10).upper()
    groups = [raw[i : i + 5] for i in range(0, 20, 5)]
    return "RK-" + "-".join(groups)
