"""System keyring integration for remembering backup passwords.

Only the human password is stored here, never a derived key. One backend is
picked per process by probing for helper tools in this order:

1. GNOME keyring daemon (talked to through ``secret-tool``)
2. KDE wallet (``kwalletcli``)
3. any other Secret Service provider (``secret-tool``)
4. a plain file under ``~/.local/share/<app>/keyring`` (always available)

The file fallback does not encrypt anything; it relies on 0600 permissions.
Each backend is a regular :class:`keyring.backend.KeyringBackend`, so
:meth:`SecretStore.install` can hand it to the ``keyring`` package for the
rest of the application. The backends are never viable in ``keyring``'s own
auto-detection: only :class:`SecretStore` picks one.

Passwords travel to helper tools on stdin, never on the command line, and
helper output is read up to :data:`READ_LIMIT` bytes only.
"""
from __future__ import annotations

import enum
import logging
import os
import shlex
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Protocol, Tuple, Union

import keyring
from jaraco.classes import properties
from keyring.backend import KeyringBackend

from khrowno.core.config import SecurityConfig, load_config
from khrowno.core.exceptions import (
    BackendCommandFailed,
    BackendCommandSignaled,
    BackendUnavailable,
    SecretStoreError,
)
from .secure_memory import SecretBytes

logger = logging.getLogger(__name__)

READ_LIMIT = 8192

SecretLike = Union[str, bytes, bytearray, SecretBytes]


class KeyringBackendKind(enum.Enum):
    GNOME_KEYRING = "gnome_keyring"
    KDE_WALLET = "kde_wallet"
    SECRET_SERVICE = "secret_service"
    FILE_BASED = "file_based"


# (kind, executable that proves it is usable), highest priority first
PROBE_ORDER = (
    (KeyringBackendKind.GNOME_KEYRING, "gnome-keyring-daemon"),
    (KeyringBackendKind.KDE_WALLET, "kwalletcli"),
    (KeyringBackendKind.SECRET_SERVICE, "secret-tool"),
)


# ----------------------------------------------------------------------
# Process spawning port
# ----------------------------------------------------------------------

@dataclass(frozen=True)
class CommandResult:
    returncode: int
    stdout: bytes = b""

    @property
    def signaled(self) -> bool:
        # subprocess reports death-by-signal as a negative return code
        return self.returncode < 0


class CommandRunner(Protocol):
    def run(
        self, command: str, stdin: Optional[Union[bytes, bytearray]] = None, capture: bool = False
    ) -> CommandResult: ...


class ShellCommandRunner:
    """Runs commands through ``sh -c``. Blocks until the child exits; no timeout."""

    def __init__(self, read_limit: int = READ_LIMIT):
        self.read_limit = read_limit

    def run(
        self, command: str, stdin: Optional[Union[bytes, bytearray]] = None, capture: bool = False
    ) -> CommandResult:
        proc = subprocess.Popen(
            ["sh", "-c", command],
            stdin=subprocess.PIPE if stdin is not None else subprocess.DEVNULL,
            stdout=subprocess.PIPE if capture else subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
        )
        try:
            if stdin is not None:
                try:
                    proc.stdin.write(stdin)
                except BrokenPipeError:
                    # child quit before reading; its exit status tells the story
                    pass
                finally:
                    proc.stdin.close()

            out = b""
            if capture:
                out = proc.stdout.read(self.read_limit + 1)
                if len(out) > self.read_limit:
                    proc.kill()
                    proc.wait()
                    raise BackendCommandFailed(f"command output exceeded {self.read_limit} bytes")
            returncode = proc.wait()
        finally:
            if proc.stdout is not None:
                proc.stdout.close()
        return CommandResult(returncode=returncode, stdout=out)


def command_exists(runner: CommandRunner, name: str) -> bool:
    result = runner.run(f"command -v {shlex.quote(name)} >/dev/null 2>&1")
    return result.returncode == 0


def _check(result: CommandResult, action: str) -> None:
    if result.signaled:
        raise BackendCommandSignaled(f"{action} was killed by signal {-result.returncode}", -result.returncode)
    if result.returncode != 0:
        raise BackendCommandFailed(f"{action} exited with status {result.returncode}", result.returncode)


def _to_secret(value: SecretLike) -> SecretBytes:
    secret = SecretBytes(value.buffer) if isinstance(value, SecretBytes) else SecretBytes(value)
    # retrieve() hands back str, so only text passwords can round-trip
    try:
        str(secret.buffer, "utf-8")
    except UnicodeDecodeError:
        secret.wipe()
        raise ValueError("password must be valid UTF-8 text") from None
    return secret


def _validate_names(service: str, username: str) -> None:
    if not service or service in (".", "..") or any(c in service for c in "/\n\r\0"):
        raise ValueError(f"invalid service name: {service!r}")
    if any(c in username for c in "\n\r\0"):
        raise ValueError("username must not contain line breaks or NUL")


# ----------------------------------------------------------------------
# Credential entry
# ----------------------------------------------------------------------

@dataclass
class CredentialEntry:
    """A stored credential; the password is wiped when the entry is disposed."""

    service: str
    username: str
    password: SecretBytes

    def file_content(self) -> SecretBytes:
        # username\npassword\n
        buf = bytearray(self.username.encode("utf-8"))
        buf += b"\n"
        buf += self.password.buffer
        buf += b"\n"
        return SecretBytes.take(buf)

    @classmethod
    def parse(cls, service: str, content: bytes) -> Optional["CredentialEntry"]:
        lines = content.split(b"\n")
        if len(lines) < 2:
            return None
        username = lines[0].rstrip(b"\r").decode("utf-8", errors="replace")
        return cls(service=service, username=username, password=SecretBytes(lines[1].rstrip(b"\r")))

    def dispose(self) -> None:
        self.password.wipe()

    def __enter__(self) -> "CredentialEntry":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.dispose()


# ----------------------------------------------------------------------
# Backends
# ----------------------------------------------------------------------

class _StoreKeyring(KeyringBackend):
    """Base for the backends below; usable only once installed by a SecretStore."""

    kind: KeyringBackendKind

    @properties.classproperty
    def priority(cls) -> float:
        # keyring treats a raising priority as "not viable"
        raise RuntimeError(f"{cls.__name__} is only used through SecretStore")

    def __str__(self) -> str:
        keyring_class = type(self)
        return f"{keyring_class.__module__}.{keyring_class.__name__} ({self.kind.value})"


class _CommandKeyring(_StoreKeyring):
    """Shared plumbing for keyrings driven by a helper executable."""

    executable: str

    def __init__(self, runner: Optional[CommandRunner] = None, app_name: str = "khrowno"):
        super().__init__()
        self.runner = runner or ShellCommandRunner()
        self.app_name = app_name

    def _lookup(self, command: str, action: str) -> Optional[str]:
        result = self.runner.run(command, capture=True)
        if result.signaled:
            raise BackendCommandSignaled(f"{action} was killed by signal {-result.returncode}", -result.returncode)
        if result.returncode == 0 and result.stdout:
            try:
                return result.stdout.decode("utf-8").rstrip("\r\n")
            except UnicodeDecodeError:
                raise BackendCommandFailed(f"{action} returned a password that is not valid UTF-8") from None
        # non-zero exit means "not found" for these tools
        return None


class SecretServiceKeyring(_CommandKeyring):
    """GNOME keyring or any other Secret Service provider, via ``secret-tool``."""

    kind = KeyringBackendKind.SECRET_SERVICE
    executable = "secret-tool"

    def __init__(
        self,
        runner: Optional[CommandRunner] = None,
        app_name: str = "khrowno",
        kind: KeyringBackendKind = KeyringBackendKind.SECRET_SERVICE,
    ):
        super().__init__(runner, app_name)
        self.kind = kind

    def _attributes(self, service: str, username: str) -> str:
        return f"service {shlex.quote(service)} username {shlex.quote(username)}"

    def set_password(self, service: str, username: str, password: SecretLike) -> None:
        label = shlex.quote(f"{self.app_name.capitalize()}: {service}")
        cmd = f"secret-tool store --label={label} {self._attributes(service, username)}"
        with _to_secret(password) as secret:
            result = self.runner.run(cmd, stdin=secret.buffer)
        _check(result, "secret-tool store")

    def get_password(self, service: str, username: str) -> Optional[str]:
        return self._lookup(f"secret-tool lookup {self._attributes(service, username)}", "secret-tool lookup")

    def delete_password(self, service: str, username: str) -> None:
        result = self.runner.run(f"secret-tool clear {self._attributes(service, username)}")
        _check(result, "secret-tool clear")


class KWalletKeyring(_CommandKeyring):
    """KDE wallet via ``kwalletcli``; one wallet folder per service."""

    kind = KeyringBackendKind.KDE_WALLET
    executable = "kwalletcli"

    def _entry(self, service: str, username: str) -> str:
        return f"-f {shlex.quote(service)} -e {shlex.quote(username)}"

    def set_password(self, service: str, username: str, password: SecretLike) -> None:
        # -P reads the new value from stdin
        with _to_secret(password) as secret:
            result = self.runner.run(f"kwalletcli {self._entry(service, username)} -P", stdin=secret.buffer)
        _check(result, "kwalletcli store")

    def get_password(self, service: str, username: str) -> Optional[str]:
        return self._lookup(f"kwalletcli {self._entry(service, username)}", "kwalletcli lookup")

    def delete_password(self, service: str, username: str) -> None:
        result = self.runner.run(f"kwalletcli {self._entry(service, username)} -d")
        _check(result, "kwalletcli delete")


class FileKeyring(_StoreKeyring):
    """One ``<service>.key`` file per service, mode 0600. Not encrypted."""

    kind = KeyringBackendKind.FILE_BASED

    def __init__(self, directory: Optional[Union[str, Path]] = None):
        super().__init__()
        self.directory = Path(directory) if directory is not None else load_config().resolved_keyring_dir()

    def _entry_path(self, service: str) -> Path:
        return self.directory / f"{service}.key"

    def set_password(self, service: str, username: str, password: SecretLike) -> None:
        self.directory.mkdir(parents=True, exist_ok=True, mode=0o700)
        path = self._entry_path(service)

        with CredentialEntry(service, username, _to_secret(password)) as entry:
            if b"\n" in entry.password.buffer:
                raise ValueError("password must not contain a newline for the file keyring")
            with entry.file_content() as content:
                fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
                with os.fdopen(fd, "wb") as f:
                    # an older file may have looser permissions
                    os.fchmod(f.fileno(), 0o600)
                    f.write(content.buffer)

    def get_password(self, service: str, username: str) -> Optional[str]:
        path = self._entry_path(service)
        try:
            with open(path, "rb") as f:
                raw = f.read(READ_LIMIT)
        except FileNotFoundError:
            return None

        entry = CredentialEntry.parse(service, raw)
        if entry is None:
            return None
        with entry:
            if entry.username != username:
                return None
            try:
                return entry.password.buffer.decode("utf-8")
            except UnicodeDecodeError:
                raise SecretStoreError(f"{path} does not hold a UTF-8 password") from None

    def delete_password(self, service: str, username: str) -> None:
        # best-effort: nothing stored is not an error
        self._entry_path(service).unlink(missing_ok=True)


# ----------------------------------------------------------------------
# Store
# ----------------------------------------------------------------------

def detect_backend(runner: CommandRunner) -> KeyringBackendKind:
    """Return the first available backend kind in :data:`PROBE_ORDER`."""
    for kind, executable in PROBE_ORDER:
        if command_exists(runner, executable):
            return kind
    return KeyringBackendKind.FILE_BASED


def build_backend(
    kind: KeyringBackendKind, runner: CommandRunner, config: SecurityConfig
) -> KeyringBackend:
    if kind in (KeyringBackendKind.GNOME_KEYRING, KeyringBackendKind.SECRET_SERVICE):
        return SecretServiceKeyring(runner, config.app_name, kind=kind)
    if kind is KeyringBackendKind.KDE_WALLET:
        return KWalletKeyring(runner, config.app_name)
    return FileKeyring(config.resolved_keyring_dir())


class SecretStore:
    """
    Persist (service, username, password) triples in the best available keyring.

    The backend is fixed at construction: either forced through
    ``KHROWNO_KEYRING_BACKEND`` / the ``kind`` argument, or probed.
    """

    def __init__(
        self,
        runner: Optional[CommandRunner] = None,
        config: Optional[SecurityConfig] = None,
        kind: Optional[KeyringBackendKind] = None,
    ):
        self.config = config or load_config()
        self.runner = runner or ShellCommandRunner()

        if kind is None and self.config.forced_backend:
            kind = KeyringBackendKind(self.config.forced_backend)
        if kind is not None:
            executable = dict(PROBE_ORDER).get(kind)
            if executable and not command_exists(self.runner, executable):
                raise BackendUnavailable(f"{kind.value} requested but {executable} was not found")
        else:
            kind = detect_backend(self.runner)

        self._backend = build_backend(kind, self.runner, self.config)
        if kind is KeyringBackendKind.FILE_BASED:
            logger.warning("no system keyring found; falling back to plain files in %s", self._backend.directory)
        else:
            logger.info("using %s keyring backend", kind.value)

    @property
    def backend_kind(self) -> KeyringBackendKind:
        return self._backend.kind

    @property
    def backend(self) -> KeyringBackend:
        return self._backend

    def store(self, service: str, username: str, password: SecretLike) -> None:
        """Save ``password``, which must be UTF-8 text whatever its type."""
        _validate_names(service, username)
        self._backend.set_password(service, username, password)

    def retrieve(self, service: str, username: str) -> Optional[str]:
        """Return the stored password, or ``None`` when there is none."""
        _validate_names(service, username)
        return self._backend.get_password(service, username)

    def delete(self, service: str, username: str) -> None:
        _validate_names(service, username)
        self._backend.delete_password(service, username)

    def assess(self) -> Tuple[bool, str]:
        """Return (is_secure, message) describing the active backend."""
        if self.backend_kind is KeyringBackendKind.FILE_BASED:
            return False, f"insecure backend: plain files in {self._backend.directory}"
        return True, f"backend looks acceptable: {self.backend_kind.value}"

    def install(self) -> None:
        """Make the active backend the process-wide ``keyring`` backend."""
        keyring.set_keyring(self._backend)


# module-level default store, probed on first use
_default_store: Optional[SecretStore] = None


def get_secret_store() -> SecretStore:
    global _default_store
    if _default_store is None:
        _default_store = SecretStore()
    return _default_store


def store_secret(service: str, username: str, password: SecretLike) -> None:
    get_secret_store().store(service, username, password)


def retrieve_secret(service: str, username: str) -> Optional[str]:
    return get_secret_store().retrieve(service, username)


def delete_secret(service: str, username: str) -> None:
    get_secret_store().delete(service, username)
