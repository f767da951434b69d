""" Utility for hashing and integrity checks. """

import hashlib
import hmac


def hash_data(data: bytes) -> bytes:
    """Return the raw 32-byte SHA-256 digest of ``data``."""
    return hashlib.sha256(data).digest()


def verify_hash(data: bytes, expected: bytes) -> bool:
    """Check ``data`` against a raw digest without leaking timing."""
    return hmac.compare_digest(hash_data(data), expected)
