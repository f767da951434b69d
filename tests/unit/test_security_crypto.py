"""Unit tests for whole-buffer encryption and the blob framing."""

import os
import struct
from unittest.mock import patch

import pytest

from khrowno.core.exceptions import AuthenticationFailed, MalformedBlob
from khrowno.security.crypto import (
    HEADER_SIZE,
    MAGIC,
    EncryptedBlob,
    decrypt_buffer,
    decrypt_data,
    deserialize_blob,
    encrypt_buffer,
    encrypt_data,
    serialize_blob,
)
from khrowno.security.secure_memory import SecretBytes


def _flip(data: bytes, index: int) -> bytes:
    return data[:index] + bytes([data[index] ^ 0x01]) + data[index + 1:]


def _blob(ct_len: int) -> EncryptedBlob:
    return EncryptedBlob(
        salt=os.urandom(32),
        nonce=os.urandom(12),
        ciphertext=os.urandom(ct_len),
        tag=os.urandom(16),
    )


# ==============================================================================
# Tests: Encrypt / Decrypt
# ==============================================================================

def test_hello_restore_scenario():
    """encrypt -> serialize -> deserialize -> decrypt, right and wrong password."""
    wire = serialize_blob(encrypt_data(b"hello-restore", "correct"))
    blob = deserialize_blob(wire)

    assert decrypt_data(blob, "correct") == b"hello-restore"
    with pytest.raises(AuthenticationFailed):
        decrypt_data(blob, "wrong")


@pytest.mark.parametrize("size", [0, 1, 13, 4096, 100_000])
def test_roundtrip_sizes(size):
    data = os.urandom(size)
    assert decrypt_buffer(encrypt_buffer(data, b"pw"), b"pw") == data


def test_blob_fields_have_fixed_sizes():
    blob = encrypt_data(b"abc", "pw")
    assert len(blob.salt) == 32
    assert len(blob.nonce) == 12
    assert len(blob.tag) == 16
    assert len(blob.ciphertext) == 3


def test_same_plaintext_encrypts_differently():
    assert encrypt_buffer(b"same", "pw") != encrypt_buffer(b"same", "pw")


@pytest.mark.parametrize("field", ["salt", "nonce", "ciphertext", "tag"])
def test_tampered_field_fails_authentication(field):
    blob = encrypt_data(b"sensitive system config", "pw")
    values = {
        "salt": blob.salt,
        "nonce": blob.nonce,
        "ciphertext": blob.ciphertext,
        "tag": blob.tag,
    }
    values[field] = _flip(values[field], len(values[field]) // 2)
    with pytest.raises(AuthenticationFailed):
        decrypt_data(EncryptedBlob(**values), "pw")


def test_every_serialized_bit_after_magic_is_covered():
    """Flipping one bit anywhere in salt/nonce/tag/ciphertext is detected."""
    wire = encrypt_buffer(b"xyz", "pw")
    for index in range(len(MAGIC), len(wire)):
        if len(MAGIC) + 32 + 12 + 16 <= index < HEADER_SIZE:
            continue  # length field: framing error, covered below
        with pytest.raises(AuthenticationFailed):
            decrypt_buffer(_flip(wire, index), "pw")


def test_wrong_password_fails():
    wire = encrypt_buffer(b"data", "right")
    for candidate in ("Right", "right ", "wrong"):
        with pytest.raises(AuthenticationFailed):
            decrypt_buffer(wire, candidate)


def test_salt_nonce_unique_over_many_encryptions():
    """10,000 encryptions under one password never repeat (salt, nonce)."""
    with patch(
        "khrowno.security.crypto.derive_key",
        side_effect=lambda password, salt: SecretBytes(b"\x07" * 32),
    ):
        pairs = {(b.salt, b.nonce) for b in (encrypt_data(b"p", "pw") for _ in range(10_000))}
    assert len(pairs) == 10_000


def test_key_is_wiped_after_decrypt_failure():
    blob = encrypt_data(b"data", "pw")
    keys = []

    def fake_derive(password, salt):
        key = SecretBytes(b"\x00" * 32)
        keys.append(key)
        return key

    with patch("khrowno.security.crypto.derive_key", side_effect=fake_derive):
        with pytest.raises(AuthenticationFailed):
            decrypt_data(blob, "pw")
    assert keys and all(k.wiped for k in keys)


def test_blob_validates_field_sizes():
    with pytest.raises(ValueError, match="salt"):
        EncryptedBlob(salt=b"x", nonce=b"n" * 12, ciphertext=b"", tag=b"t" * 16)
    with pytest.raises(ValueError, match="nonce"):
        EncryptedBlob(salt=b"s" * 32, nonce=b"n", ciphertext=b"", tag=b"t" * 16)
    with pytest.raises(ValueError, match="tag"):
        EncryptedBlob(salt=b"s" * 32, nonce=b"n" * 12, ciphertext=b"", tag=b"t")


# ==============================================================================
# Tests: Serialization
# ==============================================================================

def test_serialized_layout():
    blob = _blob(5)
    wire = serialize_blob(blob)
    assert wire[:15] == b"KHROWNO_ENC_V1\n"
    assert wire[15:47] == blob.salt
    assert wire[47:59] == blob.nonce
    assert wire[59:75] == blob.tag
    assert struct.unpack("<Q", wire[75:83]) == (5,)
    assert wire[83:] == blob.ciphertext
    assert HEADER_SIZE == 83


@pytest.mark.parametrize("ct_len", [0, 1, 1024 * 1024])
def test_serialize_deserialize_roundtrip(ct_len):
    blob = _blob(ct_len)
    assert deserialize_blob(serialize_blob(blob)) == blob


def test_deserialize_accepts_memoryview_and_bytearray():
    wire = serialize_blob(_blob(3))
    assert deserialize_blob(bytearray(wire)) == deserialize_blob(memoryview(wire))


def test_deserialize_truncated_header():
    wire = serialize_blob(_blob(0))
    with pytest.raises(MalformedBlob, match="too short"):
        deserialize_blob(wire[:82])
    with pytest.raises(MalformedBlob):
        deserialize_blob(b"")


def test_deserialize_wrong_magic():
    wire = serialize_blob(_blob(4))
    with pytest.raises(MalformedBlob, match="magic"):
        deserialize_blob(b"KHROWNO_ENC_V2\n" + wire[15:])


def test_deserialize_length_larger_than_data():
    wire = bytearray(serialize_blob(_blob(4)))
    wire[75:83] = struct.pack("<Q", 2**64 - 1)
    with pytest.raises(MalformedBlob, match="does not match"):
        deserialize_blob(bytes(wire))


def test_deserialize_length_smaller_than_data():
    wire = serialize_blob(_blob(4)) + b"trailing"
    with pytest.raises(MalformedBlob, match="does not match"):
        deserialize_blob(wire)


def test_deserialize_truncated_ciphertext():
    wire = serialize_blob(_blob(10))
    with pytest.raises(MalformedBlob):
        deserialize_blob(wire[:-1])
