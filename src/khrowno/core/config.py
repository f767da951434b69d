"""Environment-driven settings for the security subsystem."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional
import os

from .exceptions import ConfigurationError


DEFAULT_APP_NAME = "khrowno"
BACKEND_NAMES = ("gnome_keyring", "kde_wallet", "secret_service", "file_based")


@dataclass(frozen=True)
class SecurityConfig:
    """Settings resolved once from the environment."""

    app_name: str = DEFAULT_APP_NAME
    keyring_dir: Optional[Path] = None
    forced_backend: Optional[str] = None
    log_level: str = "INFO"

    def resolved_keyring_dir(self) -> Path:
        # ~/.local/share/<app>/keyring unless overridden
        if self.keyring_dir is not None:
            return self.keyring_dir
        return Path.home() / ".local" / "share" / self.app_name / "keyring"


def load_config(environ: Optional[Mapping[str, str]] = None) -> SecurityConfig:
    """
    Build a :class:`SecurityConfig` from ``environ`` (defaults to ``os.environ``).

    Recognised variables:

    - ``KHROWNO_APP_NAME``: path component used under ``~/.local/share``
    - ``KHROWNO_KEYRING_DIR``: explicit directory for the file keyring
    - ``KHROWNO_KEYRING_BACKEND``: skip probing and force a backend
    - ``KHROWNO_LOG_LEVEL``: logging level name
    """
    env = os.environ if environ is None else environ

    app_name = env.get("KHROWNO_APP_NAME") or DEFAULT_APP_NAME
    if "/" in app_name or app_name.startswith("."):
        raise ConfigurationError(f"invalid KHROWNO_APP_NAME: {app_name!r}")

    keyring_dir = env.get("KHROWNO_KEYRING_DIR")

    forced = env.get("KHROWNO_KEYRING_BACKEND")
    if forced:
        forced = forced.strip().lower()
        if forced not in BACKEND_NAMES:
            raise ConfigurationError(
                f"unknown KHROWNO_KEYRING_BACKEND {forced!r}; expected one of {', '.join(BACKEND_NAMES)}"
            )
    else:
        forced = None

    return SecurityConfig(
        app_name=app_name,
        keyring_dir=Path(keyring_dir).expanduser() if keyring_dir else None,
        forced_backend=forced,
        log_level=(env.get("KHROWNO_LOG_LEVEL") or "INFO").upper(),
    )
