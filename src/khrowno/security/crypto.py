"""Password-based encryption of whole buffers with a compact binary framing.

Blob layout (binary, all little-endian):
- 15 bytes: magic b'KHROWNO_ENC_V1\\n'
- 32 bytes: argon2id salt
- 12 bytes: chacha20-poly1305 nonce
- 16 bytes: poly1305 tag
-  8 bytes: ciphertext length N (u64)
-  N bytes: ciphertext

A fresh random salt and nonce are drawn for every encryption, so the same
(key, nonce) pair can never come up twice for one password.
"""
from __future__ import annotations

import os
import struct
from dataclasses import dataclass
from typing import Union

from khrowno.core.exceptions import MalformedBlob
from . import aead
from .kdf import SALT_LEN, derive_key, generate_salt
from .secure_memory import SecretBytes

MAGIC = b"KHROWNO_ENC_V1\n"
_FIXED = struct.Struct(f"<{SALT_LEN}s{aead.NONCE_SIZE}s{aead.TAG_SIZE}sQ")
HEADER_SIZE = len(MAGIC) + _FIXED.size  # 83

Password = Union[str, bytes, bytearray, SecretBytes]


@dataclass(frozen=True)
class EncryptedBlob:
    salt: bytes
    nonce: bytes
    ciphertext: bytes
    tag: bytes

    def __post_init__(self):
        if len(self.salt) != SALT_LEN:
            raise ValueError(f"salt must be {SALT_LEN} bytes")
        if len(self.nonce) != aead.NONCE_SIZE:
            raise ValueError(f"nonce must be {aead.NONCE_SIZE} bytes")
        if len(self.tag) != aead.TAG_SIZE:
            raise ValueError(f"tag must be {aead.TAG_SIZE} bytes")


def encrypt_data(plaintext: bytes, password: Password) -> EncryptedBlob:
    """Encrypt ``plaintext`` under a key derived from ``password``."""
    salt = generate_salt()
    nonce = os.urandom(aead.NONCE_SIZE)
    with derive_key(password, salt) as key:
        ciphertext, tag = aead.encrypt(plaintext, key, nonce)
    return EncryptedBlob(salt=salt, nonce=nonce, ciphertext=ciphertext, tag=tag)


def decrypt_data(blob: EncryptedBlob, password: Password) -> bytes:
    """
    Decrypt ``blob``; raises :class:`AuthenticationFailed` for a wrong
    password and for tampered data alike.
    """
    with derive_key(password, blob.salt) as key:
        return aead.decrypt(blob.ciphertext, blob.tag, key, blob.nonce)


def serialize_blob(blob: EncryptedBlob) -> bytes:
    return MAGIC + _FIXED.pack(blob.salt, blob.nonce, blob.tag, len(blob.ciphertext)) + blob.ciphertext


def deserialize_blob(data: bytes) -> EncryptedBlob:
    """Parse a serialized blob, validating the framing before trusting any field."""
    view = memoryview(data)
    if len(view) < HEADER_SIZE:
        raise MalformedBlob(f"blob too short: {len(view)} bytes, need at least {HEADER_SIZE}")
    if bytes(view[: len(MAGIC)]) != MAGIC:
        raise MalformedBlob("Invalid blob format (magic mismatch)")

    salt, nonce, tag, ct_len = _FIXED.unpack_from(view, len(MAGIC))
    remaining = len(view) - HEADER_SIZE
    if ct_len != remaining:
        raise MalformedBlob(f"declared ciphertext length {ct_len} does not match the {remaining} bytes present")

    return EncryptedBlob(salt=salt, nonce=nonce, ciphertext=bytes(view[HEADER_SIZE:]), tag=tag)


def encrypt_buffer(plaintext: bytes, password: Password) -> bytes:
    """Encrypt and serialize in one step."""
    return serialize_blob(encrypt_data(plaintext, password))


def decrypt_buffer(data: bytes, password: Password) -> bytes:
    """Deserialize and decrypt in one step."""
    return decrypt_data(deserialize_blob(data), password)
