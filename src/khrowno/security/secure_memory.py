"""Owned, wipeable buffers for key material and passwords.

Python ``bytes`` and ``str`` are immutable, so anything secret that this
package controls lives in a :class:`SecretBytes`, which keeps the data in a
``bytearray`` and overwrites it with zeros when released. Use it as a
context manager so the wipe happens on every exit path, including
exceptions:

    with derive_key(password, salt) as key:
        ...

Copies made by third-party libraries (argon2's return value, the cipher
context inside ``cryptography``) are outside our reach; wiping is
best-effort for those.
"""
from __future__ import annotations

from typing import Union


class SecretBytes:
    __slots__ = ("_buf",)

    def __init__(self, data: Union[bytes, bytearray, memoryview, str]):
        if isinstance(data, str):
            data = data.encode("utf-8")
        self._buf = bytearray(data)

    @classmethod
    def take(cls, buf: bytearray) -> "SecretBytes":
        """Adopt ``buf`` without copying; the caller must not keep using it."""
        obj = cls.__new__(cls)
        obj._buf = buf
        return obj

    @property
    def buffer(self) -> bytearray:
        if self._buf is None:
            raise ValueError("secret has already been wiped")
        return self._buf

    @property
    def wiped(self) -> bool:
        return self._buf is None

    def reveal(self) -> bytes:
        """Return an immutable copy; only for APIs that insist on ``bytes``."""
        return bytes(self.buffer)

    def wipe(self) -> None:
        """Overwrite the buffer with zeros and drop it. Safe to call twice."""
        buf = self._buf
        if buf is None:
            return
        try:
            for i in range(len(buf)):
                buf[i] = 0
        finally:
            self._buf = None

    def __len__(self) -> int:
        return len(self.buffer)

    def __enter__(self) -> "SecretBytes":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.wipe()

    def __del__(self):
        # __init__ may have failed before _buf was set
        if getattr(self, "_buf", None) is not None:
            self.wipe()

    def __repr__(self) -> str:
        state = "wiped" if self._buf is None else f"{len(self._buf)} bytes"
        return f"<SecretBytes {state}>"
