"""
Exceptions for the Khrowno security subsystem
Everything raised on purpose derives from KhrownoError so callers have one
general error catcher, and each class carries a message fit for end users.
"""

from __future__ import annotations

from typing import Optional


class KhrownoError(Exception):
    # general container for errors
    user_message = "An unexpected error occurred."


class ConfigurationError(KhrownoError):
    # raised when an environment setting cannot be understood
    user_message = "Invalid configuration. Check the KHROWNO_* environment variables."


class CryptoError(KhrownoError):
    # anything that goes wrong inside encryption or decryption
    user_message = "Encryption failed. Your data was not encrypted."


class KeyDerivationFailed(CryptoError):
    # argon2 ran out of memory or rejected its parameters
    user_message = "Failed to derive encryption key from password."


class AuthenticationFailed(CryptoError):
    # poly1305 tag mismatch: wrong password OR tampered data, never which one
    user_message = "Wrong password or corrupted data. The backup may have been tampered with."


class MalformedBlob(CryptoError):
    # framing of an encrypted blob (or stream header) is broken
    user_message = "Invalid backup format. This file may not be a valid Khrowno backup."


class ChunkTooLarge(CryptoError):
    # declared chunk length exceeds the working buffer
    user_message = "Backup file is corrupted or incomplete. Cannot restore."


class IncompleteChunk(CryptoError):
    # stream ended inside a chunk or its length prefix
    user_message = "Backup file is corrupted or incomplete. Cannot restore."


class TruncatedInput(CryptoError):
    # source ran dry before the declared size was encrypted
    user_message = "Input ended early. The encrypted output is incomplete."


class NonceSpaceExhausted(CryptoError):
    # chunk counter would wrap around
    user_message = "Stream is too large to encrypt with a single key."


class SecretStoreError(KhrownoError):
    # base for keyring backend problems
    user_message = "The system keyring could not be used."


class BackendCommandFailed(SecretStoreError):
    # keyring helper exited with a non-zero status
    user_message = "The keyring helper command failed."

    def __init__(self, message: str, returncode: Optional[int] = None):
        super().__init__(message)
        self.returncode = returncode


class BackendCommandSignaled(SecretStoreError):
    # keyring helper was killed by a signal
    user_message = "The keyring helper command was terminated."

    def __init__(self, message: str, signal_number: Optional[int] = None):
        super().__init__(message)
        self.signal_number = signal_number


class BackendUnavailable(SecretStoreError):
    # a forced backend is missing its helper tool
    user_message = "The requested keyring backend is not available on this system."


def describe_error(exc: BaseException) -> str:
    """Return a message suitable for showing to an end user."""
    if isinstance(exc, KhrownoError):
        return exc.user_message
    return str(exc) or exc.__class__.__name__
