"""
Shared pytest fixtures for the Roost test suite.

Key derivation runs with the cheapest Argon2id parameters the library
accepts so that the suite stays fast; the production defaults are
exercised separately in test_crypto.py.
"""

import pytest

from roostlib.crypto import KdfParams
from roostlib.database import CredentialStore

FAST_KDF = KdfParams(time_cost=1, memory_cost=8, parallelism=1)


@pytest.fixture
def fast_kdf():
    return FAST_KDF


@pytest.fixture
def db_folder(tmp_path):
    """Empty database folder inside the test's temp directory."""
    folder = tmp_path / "dbs"
    folder.mkdir()
    return folder


@pytest.fixture
def store(db_folder):
    return CredentialStore(str(db_folder), kdf_params=FAST_KDF)


@pytest.fixture
def vault(store):
    """A freshly created "vault" database with master password "p1"."""
    return store.create("vault", "p1")


@pytest.fixture
def session(store, vault):
    """An open session on the vault fixture, closed after the test."""
    result = store.open(vault, "p1")
    yield result.session
    result.session.close()


@pytest.fixture(autouse=True)
def clean_roost_env(monkeypatch):
    """Keep the caller's ROOST_* settings out of the tests."""
    for name in ("ROOST_CONFIG", "ROOST_DBS_FOLDER", "ROOST_CLIPBOARD_TIMEOUT", "ROOST_LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)
