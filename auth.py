"""
Clio OAuth 2.0 Authentication Module

Exchanges a stored refresh token for a short-lived access token:
1. Load the operator's client id / secret / refresh token from the secret store
2. POST a refresh_token grant to the Clio token endpoint
3. Keep the access token in memory until shortly before it expires
"""
import logging
import os
from datetime import datetime, timedelta
from typing import Dict, Optional, Protocol, Tuple

import httpx

from config import EngineConfig
from errors import AuthError

logger = logging.getLogger(__name__)


class SecretStore(Protocol):
    def get_secret(self, name: str) -> Optional[str]:
        ...


class EnvSecretStore:
    """
    Reads secrets from environment variables.

    "lz-clio-v1-clientid" is looked up as LZ_CLIO_V1_CLIENTID.
    """

    def get_secret(self, name: str) -> Optional[str]:
        return os.environ.get(name.replace("-", "_").upper())


class TokenCache:
    """Holds the current access token and its expiry."""

    def __init__(self):
        self.access_token: Optional[str] = None
        self.expires_at: Optional[datetime] = None

    def save(self, tokens: dict) -> None:
        self.access_token = tokens.get("access_token")
        expires_in = tokens.get("expires_in")
        if expires_in:
            self.expires_at = datetime.now() + timedelta(seconds=int(expires_in))
        else:
            self.expires_at = None

    def clear(self) -> None:
        self.access_token = None
        self.expires_at = None

    def is_access_token_expired(self) -> bool:
        if not self.access_token or not self.expires_at:
            return True
        # Consider expired if within 5 minutes of expiration
        return datetime.now() >= (self.expires_at - timedelta(minutes=5))


class ClioAuth:
    """Handles the Clio refresh-token grant for one operator's credentials."""

    def __init__(
        self,
        config: EngineConfig,
        secrets: SecretStore = None,
        http_client: httpx.AsyncClient = None,
    ):
        self.config = config
        self.secrets = secrets or EnvSecretStore()
        self.cache = TokenCache()
        self._http_client = http_client or httpx.AsyncClient(timeout=config.request_timeout)

    def _secret_names(self) -> Dict[str, str]:
        initials = self.config.credential_selector
        return {
            "client_id": f"{initials}-clio-v1-clientid",
            "client_secret": f"{initials}-clio-v1-clientsecret",
            "refresh_token": f"{initials}-clio-v1-refreshtoken",
        }

    def load_credentials(self) -> Tuple[str, str, str]:
        """Fetch (client_id, client_secret, refresh_token) from the secret store."""
        values = {}
        for field, name in self._secret_names().items():
            value = self.secrets.get_secret(name)
            if not value:
                raise AuthError(f"Missing Clio credential: {name}")
            values[field] = value
        return values["client_id"], values["client_secret"], values["refresh_token"]

    async def refresh_access_token(self) -> dict:
        """Use the refresh token to get a new access token."""
        client_id, client_secret, refresh_token = self.load_credentials()

        data = {
            "client_id": client_id,
            "client_secret": client_secret,
            "refresh_token": refresh_token,
            "grant_type": "refresh_token",
        }

        try:
            response = await self._http_client.post(self.config.crm_token_url, data=data)
        except httpx.RequestError as e:
            raise AuthError(f"Token request failed: {e}")

        if not response.is_success:
            logger.error("Clio token exchange failed: %s", response.status_code)
            raise AuthError(f"Failed to get Clio access token ({response.status_code})")

        try:
            tokens = response.json()
        except ValueError:
            logger.error("Clio token endpoint returned a non-JSON body (%s)", response.status_code)
            raise AuthError("Clio token response was not JSON")
        if not isinstance(tokens, dict) or not tokens.get("access_token"):
            raise AuthError("Clio token response did not include an access token")

        self.cache.save(tokens)
        logger.info("Clio access token refreshed for %s", self.config.credential_selector)
        return tokens

    async def get_access_token(self, force_refresh: bool = False) -> str:
        """
        Get a valid access token, refreshing if necessary.
        Raises AuthError if the exchange fails.
        """
        if force_refresh or self.cache.is_access_token_expired():
            await self.refresh_access_token()
        return self.cache.access_token

    def invalidate(self) -> None:
        """Drop the cached token after Clio rejects it (401)."""
        if self.cache.access_token:
            logger.warning("Clio rejected the cached access token, discarding it")
        self.cache.clear()

    async def aclose(self) -> None:
        await self._http_client.aclose()
