"""Unit tests for configuration, error messages and logging setup."""

import logging
from pathlib import Path
from unittest.mock import patch

import pytest

from khrowno.core.config import SecurityConfig, load_config
from khrowno.core.exceptions import (
    AuthenticationFailed,
    BackendCommandFailed,
    ConfigurationError,
    CryptoError,
    KhrownoError,
    MalformedBlob,
    describe_error,
)
from khrowno.core.logging_config import configure_logging


# ==============================================================================
# Tests: load_config
# ==============================================================================

def test_defaults():
    cfg = load_config({})
    assert cfg == SecurityConfig()
    assert cfg.app_name == "khrowno"
    assert cfg.forced_backend is None
    assert cfg.log_level == "INFO"


def test_default_keyring_dir(monkeypatch, tmp_path):
    monkeypatch.setenv("HOME", str(tmp_path))
    assert load_config({}).resolved_keyring_dir() == tmp_path / ".local/share/khrowno/keyring"


def test_app_name_changes_keyring_dir(monkeypatch, tmp_path):
    monkeypatch.setenv("HOME", str(tmp_path))
    cfg = load_config({"KHROWNO_APP_NAME": "otherapp"})
    assert cfg.resolved_keyring_dir() == tmp_path / ".local/share/otherapp/keyring"


def test_explicit_keyring_dir():
    cfg = load_config({"KHROWNO_KEYRING_DIR": "/srv/keys"})
    assert cfg.resolved_keyring_dir() == Path("/srv/keys")


def test_forced_backend_normalised():
    assert load_config({"KHROWNO_KEYRING_BACKEND": " KDE_Wallet "}).forced_backend == "kde_wallet"


def test_unknown_backend_rejected():
    with pytest.raises(ConfigurationError, match="KHROWNO_KEYRING_BACKEND"):
        load_config({"KHROWNO_KEYRING_BACKEND": "pass"})


@pytest.mark.parametrize("name", ["../evil", ".hidden", "a/b"])
def test_bad_app_name_rejected(name):
    with pytest.raises(ConfigurationError):
        load_config({"KHROWNO_APP_NAME": name})


def test_reads_process_environment(monkeypatch):
    monkeypatch.setenv("KHROWNO_LOG_LEVEL", "debug")
    assert load_config().log_level == "DEBUG"


# ==============================================================================
# Tests: errors
# ==============================================================================

def test_hierarchy():
    assert issubclass(AuthenticationFailed, CryptoError)
    assert issubclass(CryptoError, KhrownoError)
    assert issubclass(BackendCommandFailed, KhrownoError)


def test_describe_error_uses_user_message():
    msg = describe_error(AuthenticationFailed("tag mismatch"))
    assert "Wrong password or corrupted data" in msg
    assert "tag mismatch" not in msg
    assert "not a valid Khrowno backup" in describe_error(MalformedBlob("x"))


def test_describe_foreign_error():
    assert describe_error(OSError("disk on fire")) == "disk on fire"
    assert describe_error(KeyError()) == "KeyError"


def test_backend_error_keeps_status():
    err = BackendCommandFailed("secret-tool store exited with status 1", 1)
    assert err.returncode == 1
    assert str(err) == "secret-tool store exited with status 1"


# ==============================================================================
# Tests: logging
# ==============================================================================

def test_configure_logging_with_level_name():
    with patch("khrowno.core.logging_config.logging.basicConfig") as basic:
        configure_logging("debug")
    assert basic.call_args.kwargs["level"] == logging.DEBUG


def test_configure_logging_from_environment(monkeypatch):
    monkeypatch.setenv("KHROWNO_LOG_LEVEL", "WARNING")
    with patch("khrowno.core.logging_config.logging.basicConfig") as basic:
        configure_logging()
    assert basic.call_args.kwargs["level"] == logging.WARNING


def test_configure_logging_unknown_level_falls_back_to_info():
    with patch("khrowno.core.logging_config.logging.basicConfig") as basic:
        configure_logging("chatty")
    assert basic.call_args.kwargs["level"] == logging.INFO
