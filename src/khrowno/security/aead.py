"""ChaCha20-Poly1305 for single in-memory buffers.

ChaCha20-Poly1305 rather than AES-GCM: it is fast and constant-time in
software, so machines without AES-NI do not fall back to table-based AES.
Tag verification happens inside ``cryptography`` before any plaintext is
returned.
"""
from typing import Tuple, Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import ChaCha20Poly1305

from khrowno.core.exceptions import AuthenticationFailed
from .secure_memory import SecretBytes

KEY_SIZE = 32
NONCE_SIZE = 12
TAG_SIZE = 16

KeyLike = Union[bytes, bytearray, SecretBytes]


def _cipher(key: KeyLike) -> ChaCha20Poly1305:
    if isinstance(key, SecretBytes):
        key = key.buffer
    if len(key) != KEY_SIZE:
        raise ValueError(f"key must be {KEY_SIZE} bytes, got {len(key)}")
    return ChaCha20Poly1305(key)


def _check_nonce(nonce: bytes) -> None:
    if len(nonce) != NONCE_SIZE:
        raise ValueError(f"nonce must be {NONCE_SIZE} bytes, got {len(nonce)}")


def seal(plaintext: bytes, key: KeyLike, nonce: bytes, associated_data: bytes = b"") -> bytes:
    """Encrypt and return ``ciphertext || tag`` as one buffer."""
    _check_nonce(nonce)
    return _cipher(key).encrypt(bytes(nonce), bytes(plaintext), associated_data or None)


def open_sealed(sealed: bytes, key: KeyLike, nonce: bytes, associated_data: bytes = b"") -> bytes:
    """Inverse of :func:`seal`; raises AuthenticationFailed on a bad tag."""
    _check_nonce(nonce)
    if len(sealed) < TAG_SIZE:
        raise AuthenticationFailed("ciphertext shorter than the authentication tag")
    try:
        return _cipher(key).decrypt(bytes(nonce), bytes(sealed), associated_data or None)
    except InvalidTag:
        # Deliberately the same error for a wrong password and for tampering.
        raise AuthenticationFailed("wrong password or corrupted data") from None


def encrypt(
    plaintext: bytes, key: KeyLike, nonce: bytes, associated_data: bytes = b""
) -> Tuple[bytes, bytes]:
    """
    Encrypt ``plaintext`` and return ``(ciphertext, tag)``.

    Deterministic for identical inputs: the caller must never reuse a nonce
    with the same key.
    """
    sealed = seal(plaintext, key, nonce, associated_data)
    return sealed[:-TAG_SIZE], sealed[-TAG_SIZE:]


def decrypt(
    ciphertext: bytes, tag: bytes, key: KeyLike, nonce: bytes, associated_data: bytes = b""
) -> bytes:
    """Verify ``tag`` and return the plaintext, or raise AuthenticationFailed."""
    if len(tag) != TAG_SIZE:
        raise ValueError(f"tag must be {TAG_SIZE} bytes, got {len(tag)}")
    return open_sealed(bytes(ciphertext) + bytes(tag), key, nonce, associated_data)
