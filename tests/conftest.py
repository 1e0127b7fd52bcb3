import os
import sys
from pathlib import Path
import pytest
from unittest.mock import patch


def _ensure_project_root_on_path() -> None:
    this_file = Path(__file__).resolve()
    project_root = this_file.parent.parent
    if str(project_root) not in sys.path:
        sys.path.insert(0, str(project_root))


_ensure_project_root_on_path()

# Variables the vault and settings read; tests must not see the developer's values
_ISOLATED_ENV_VARS = (
    "DEERAPI_API_KEY",
    "DEERAPI_BASE_URL",
    "BINARY_DATA_MODE",
    "BINARY_DATA_DIR",
)


@pytest.fixture(autouse=True)
def test_env_isolation(tmp_path):
    """Patch find_dotenv to return an isolated temporary .env path for each test."""
    env_dir = tmp_path / "isolated_env"
    env_dir.mkdir()
    dotenv_path = str(env_dir / ".env")
    Path(dotenv_path).touch()

    saved = {name: os.environ.pop(name) for name in _ISOLATED_ENV_VARS if name in os.environ}

    from core.api_key_vault import APIKeyVault
    from services.binary_data_service import reset_binary_data_store
    APIKeyVault._instance = None
    APIKeyVault._keys.clear()
    reset_binary_data_store()

    with patch('core.api_key_vault.find_dotenv', return_value=dotenv_path):
        yield

    APIKeyVault._instance = None
    APIKeyVault._keys.clear()
    reset_binary_data_store()
    for name in _ISOLATED_ENV_VARS:
        os.environ.pop(name, None)
    os.environ.update(saved)


@pytest.fixture
def deerapi_key(monkeypatch):
    monkeypatch.setenv("DEERAPI_API_KEY", "test-deer-key")
    return "test-deer-key"


@pytest.fixture
def filesystem_store(tmp_path):
    """A BinaryDataStore writing under tmp_path, installed as the process-wide store."""
    import services.binary_data_service as binary_data_service
    store = binary_data_service.BinaryDataStore("filesystem", tmp_path / "binary")
    binary_data_service._store = store
    return store
