"""Argon2id key derivation for backup passwords."""
import hmac
import os
from typing import Dict, Union

from argon2.exceptions import HashingError
from argon2.low_level import Type, hash_secret_raw

from khrowno.core.exceptions import KeyDerivationFailed
from .secure_memory import SecretBytes

SALT_LEN = 32
KEY_LEN = 32

# Fixed so that backups made on different machines stay interchangeable.
# Roughly 300ms per derivation on a mid-range laptop.
TIME_COST = 3
MEMORY_COST = 65536  # KiB, i.e. 64 MiB
PARALLELISM = 4


def generate_salt(length: int = SALT_LEN) -> bytes:
    """Return a cryptographically secure random salt."""
    return os.urandom(length)


def _as_bytes(password: Union[str, bytes, bytearray, SecretBytes]) -> bytes:
    if isinstance(password, SecretBytes):
        return password.reveal()
    if isinstance(password, str):
        return password.encode("utf-8")
    return bytes(password)


def derive_key(password: Union[str, bytes, bytearray, SecretBytes], salt: bytes) -> SecretBytes:
    """
    Derive the 32-byte symmetric key for ``password`` and ``salt``.

    Every encryption path (whole-buffer and streaming) goes through here, so
    the same password and salt always yield the same key. The result is a
    :class:`SecretBytes`; use it as a context manager so it gets wiped.
    """
    if len(salt) != SALT_LEN:
        raise ValueError(f"salt must be {SALT_LEN} bytes, got {len(salt)}")

    try:
        raw = hash_secret_raw(
            secret=_as_bytes(password),
            salt=bytes(salt),
            time_cost=TIME_COST,
            memory_cost=MEMORY_COST,
            parallelism=PARALLELISM,
            hash_len=KEY_LEN,
            type=Type.ID,
        )
    except (HashingError, MemoryError) as exc:
        raise KeyDerivationFailed(f"argon2id derivation failed: {exc}") from exc

    return SecretBytes(raw)


def hash_password_with_salt(password: Union[str, bytes], salt: bytes) -> str:
    """Return the derived key as lowercase hex, for storing a password verifier."""
    with derive_key(password, salt) as key:
        return key.buffer.hex()


def verify_password(password: Union[str, bytes], salt: bytes, expected_hex: str) -> bool:
    candidate = hash_password_with_salt(password, salt)
    return hmac.compare_digest(candidate.encode("ascii"), expected_hex.lower().encode("ascii"))


def kdf_params_to_dict(salt: bytes) -> Dict:
    return {
        "algo": "argon2id",
        "salt": salt.hex(),
        "time": TIME_COST,
        "memory": MEMORY_COST,
        "parallelism": PARALLELISM,
        "key_len": KEY_LEN,
    }
