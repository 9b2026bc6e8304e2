"""
Shared fixtures for cleanup tests
"""

import pytest

from cleanup.config import CleanupConfig, ConfigManager, DatabaseConfig, GeneralConfig, StorageConfig


def make_config(**general) -> CleanupConfig:
    """A config that passes validation (storage and database filled in)"""
    return CleanupConfig(
        general=GeneralConfig(**general),
        storage=StorageConfig(
            endpoint="https://storage.test",
            bucket="media",
            access_key_id="key",
            secret_access_key="secret",
        ),
        database=DatabaseConfig(url="sqlite+aiosqlite:///:memory:"),
    )


@pytest.fixture
def valid_config() -> CleanupConfig:
    return make_config()


@pytest.fixture
def config_manager(valid_config) -> ConfigManager:
    return ConfigManager(valid_config)
