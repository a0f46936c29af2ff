"""
Tests for environment-driven configuration.

Run with: uv run pytest tests/test_config.py -v
"""
import pytest

from config import CLIO_API_URL, EngineConfig, NA_DATE
from errors import ConfigurationError

ENV_VARS = (
    "CLIO_RATE_CHANGE_FIELD_ID", "CLIO_API_BASE", "CLIO_TOKEN_URL", "CLIO_USER_INITIALS",
    "SQL_CONNECTION_STRING_LEGACY", "SQL_CONNECTION_STRING",
    "SQL_CONNECTION_STRING_VNET", "INSTRUCTIONS_SQL_CONNECTION_STRING",
    "CLIO_INTER_ITEM_DELAY", "CLIO_REQUEST_TIMEOUT",
)


@pytest.fixture
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


def test_defaults(clean_env):
    config = EngineConfig.from_env()

    assert config.crm_field_id == 463462
    assert config.crm_base_url == CLIO_API_URL
    assert config.credential_selector == "lz"
    assert config.inter_item_delay == 0.1
    assert config.legacy_database_url is None
    assert NA_DATE == "1970-01-01"


def test_connection_string_fallbacks(clean_env):
    clean_env.setenv("SQL_CONNECTION_STRING", "postgresql://legacy")
    clean_env.setenv("INSTRUCTIONS_SQL_CONNECTION_STRING", "postgresql://instructions")

    config = EngineConfig.from_env()

    assert config.require_legacy_database() == "postgresql://legacy"
    assert config.require_tracking_database() == "postgresql://instructions"


def test_preferred_connection_strings_win(clean_env):
    clean_env.setenv("SQL_CONNECTION_STRING", "postgresql://old")
    clean_env.setenv("SQL_CONNECTION_STRING_LEGACY", "postgresql://new")

    assert EngineConfig.from_env().legacy_database_url == "postgresql://new"


def test_initials_lowercased(clean_env):
    clean_env.setenv("CLIO_USER_INITIALS", "AB")

    assert EngineConfig.from_env().credential_selector == "ab"


def test_bad_field_id(clean_env):
    clean_env.setenv("CLIO_RATE_CHANGE_FIELD_ID", "date-of-rate-change")

    with pytest.raises(ConfigurationError, match="CLIO_RATE_CHANGE_FIELD_ID"):
        EngineConfig.from_env()


def test_bad_delay(clean_env):
    clean_env.setenv("CLIO_INTER_ITEM_DELAY", "soon")

    with pytest.raises(ConfigurationError, match="CLIO_INTER_ITEM_DELAY"):
        EngineConfig.from_env()


def test_missing_store_messages(clean_env):
    config = EngineConfig.from_env()

    with pytest.raises(ConfigurationError, match="Missing instructions database connection string"):
        config.require_tracking_database()
    with pytest.raises(ConfigurationError, match="Missing legacy database connection string"):
        config.require_legacy_database()
