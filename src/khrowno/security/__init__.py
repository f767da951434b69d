"""Security helpers for Khrowno backups.

This package provides:
- Argon2id key derivation from backup passwords
- ChaCha20-Poly1305 encryption of whole buffers with a versioned framing
- Chunked streaming encryption for payloads too large for memory
- Password storage in the system keyring, with a file fallback

The rest of the tool only needs the functions re-exported here.
"""

from .kdf import generate_salt, derive_key, hash_password_with_salt, verify_password
from .crypto import (
    EncryptedBlob,
    encrypt_data,
    decrypt_data,
    serialize_blob,
    deserialize_blob,
    encrypt_buffer,
    decrypt_buffer,
)
from .streaming import StreamCodec, encrypt_stream, decrypt_stream, encrypt_file, decrypt_file
from .keystore import (
    KeyringBackendKind,
    SecretStore,
    get_secret_store,
    store_secret,
    retrieve_secret,
    delete_secret,
)
from .secure_memory import SecretBytes

__all__ = [
    "generate_salt",
    "derive_key",
    "hash_password_with_salt",
    "verify_password",
    "EncryptedBlob",
    "encrypt_data",
    "decrypt_data",
    "serialize_blob",
    "deserialize_blob",
    "encrypt_buffer",
    "decrypt_buffer",
    "StreamCodec",
    "encrypt_stream",
    "decrypt_stream",
    "encrypt_file",
    "decrypt_file",
    "KeyringBackendKind",
    "SecretStore",
    "get_secret_store",
    "store_secret",
    "retrieve_secret",
    "delete_secret",
    "SecretBytes",
]
