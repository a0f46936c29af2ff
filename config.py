"""
Rate Change Sync Configuration

Everything is resolved once from the environment (and an optional .env file)
into an EngineConfig, which is then handed to the engine at construction.
"""
import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Optional

from dotenv import dotenv_values

from errors import ConfigurationError

# Load environment variables from .env file
_env_path = Path(__file__).parent / ".env"
if _env_path.exists():
    for key, value in dotenv_values(_env_path).items():
        if value and not os.environ.get(key):  # Set if value exists and env not already set
            os.environ[key] = value

# Clio defaults
CLIO_API_URL = "https://eu.app.clio.com/api/v4"
CLIO_TOKEN_URL = "https://eu.app.clio.com/oauth/token"

# "Date of Rate Change" custom field, found with: ratechange-agent custom-fields
DEFAULT_RATE_CHANGE_FIELD_ID = "463462"

# Written into the CRM field when a client is marked not applicable
NA_DATE = "1970-01-01"

# Pause between matters to stay under the Clio rate limit
INTER_ITEM_DELAY_SECONDS = 0.1

REQUEST_TIMEOUT_SECONDS = 30.0

# Characters of an upstream error body kept in per-matter errors
ERROR_BODY_LIMIT = 100


def _first_env(*names: str) -> Optional[str]:
    for name in names:
        value = os.environ.get(name)
        if value:
            return value
    return None


def _parse_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}")


@dataclass(frozen=True)
class EngineConfig:
    """Settings for the rate change sync engine."""
    crm_field_id: int
    crm_base_url: str = CLIO_API_URL
    crm_token_url: str = CLIO_TOKEN_URL
    credential_selector: str = "lz"
    legacy_database_url: Optional[str] = None
    tracking_database_url: Optional[str] = None
    inter_item_delay: float = INTER_ITEM_DELAY_SECONDS
    request_timeout: float = REQUEST_TIMEOUT_SECONDS

    @classmethod
    def from_env(cls) -> "EngineConfig":
        raw_field_id = os.environ.get("CLIO_RATE_CHANGE_FIELD_ID") or DEFAULT_RATE_CHANGE_FIELD_ID
        try:
            field_id = int(raw_field_id)
        except ValueError:
            raise ConfigurationError(
                f"CLIO_RATE_CHANGE_FIELD_ID must be an integer, got {raw_field_id!r}"
            )

        return cls(
            crm_field_id=field_id,
            crm_base_url=os.environ.get("CLIO_API_BASE", CLIO_API_URL).rstrip("/"),
            crm_token_url=os.environ.get("CLIO_TOKEN_URL", CLIO_TOKEN_URL),
            credential_selector=(os.environ.get("CLIO_USER_INITIALS") or "lz").lower(),
            legacy_database_url=_first_env(
                "SQL_CONNECTION_STRING_LEGACY", "SQL_CONNECTION_STRING"
            ),
            tracking_database_url=_first_env(
                "SQL_CONNECTION_STRING_VNET", "INSTRUCTIONS_SQL_CONNECTION_STRING"
            ),
            inter_item_delay=_parse_float("CLIO_INTER_ITEM_DELAY", INTER_ITEM_DELAY_SECONDS),
            request_timeout=_parse_float("CLIO_REQUEST_TIMEOUT", REQUEST_TIMEOUT_SECONDS),
        )

    def require_tracking_database(self) -> str:
        if not self.tracking_database_url:
            raise ConfigurationError("Missing instructions database connection string")
        return self.tracking_database_url

    def require_legacy_database(self) -> str:
        if not self.legacy_database_url:
            raise ConfigurationError("Missing legacy database connection string")
        return self.legacy_database_url


@lru_cache(maxsize=1)
def get_config() -> EngineConfig:
    """Resolve the engine configuration once per process."""
    return EngineConfig.from_env()
