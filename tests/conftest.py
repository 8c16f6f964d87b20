"""Shared fixtures: isolated project and home directories per test."""
import pytest
import pytest_asyncio

from secretsage.service import CredentialService
from secretsage.vault.config import SageConfig
from secretsage.vault.crypto import X25519Provider
from secretsage.vault.store import VaultStore


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    """Keep the developer's environment out of config resolution."""
    for var in (
        "SECRETSAGE_VAULT_LOCATION",
        "SECRETSAGE_VAULT_PATH",
        "SECRETSAGE_LOCK_TIMEOUT",
    ):
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def provider():
    return X25519Provider()


@pytest.fixture
def project(tmp_path):
    path = tmp_path / "project"
    path.mkdir()
    return path


@pytest.fixture
def home(tmp_path):
    path = tmp_path / "home"
    path.mkdir()
    return path


@pytest.fixture
def store(tmp_path):
    """A store over a not yet initialized vault directory."""
    return VaultStore(tmp_path / "vault", lock_timeout=0.5)


@pytest_asyncio.fixture
async def ready_store(store):
    await store.initialize()
    return store


@pytest.fixture
def service(project, home):
    """Service with default settings, isolated from real config files."""
    return CredentialService(SageConfig(), cwd=project, home=home)
