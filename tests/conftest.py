"""Shared fixtures for the Khrowno security test-suite."""

import pytest

from khrowno.security import kdf


def pytest_configure(config):
    config.addinivalue_line("markers", "real_kdf: run with the production Argon2id cost parameters")


@pytest.fixture(autouse=True)
def fast_kdf(request, monkeypatch):
    """Use very low Argon2id costs for speed unless a test asks for the real ones."""
    if request.node.get_closest_marker("real_kdf"):
        yield
        return
    monkeypatch.setattr(kdf, "TIME_COST", 1)
    monkeypatch.setattr(kdf, "MEMORY_COST", 64)
    monkeypatch.setattr(kdf, "PARALLELISM", 4)
    yield


@pytest.fixture
def keyring_dir(tmp_path):
    return tmp_path / "keyring"
