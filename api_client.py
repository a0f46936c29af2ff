"""
Clio API Client

Thin async wrapper over the Clio v4 matter and custom-field resources.

Every call returns an ApiResult instead of raising, so callers can decide
per matter whether a failure is fatal:
- 2xx                -> ok
- 404                -> NOT_FOUND
- other non-2xx      -> UPSTREAM (status + truncated body)
- 2xx, non-JSON body -> UPSTREAM
- network / timeout  -> TRANSPORT
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx

from config import EngineConfig, ERROR_BODY_LIMIT
from errors import ErrorKind, UpstreamError

logger = logging.getLogger(__name__)

MATTER_ATTORNEY_FIELDS = (
    "id,display_number,responsible_attorney{id,name},originating_attorney{id,name},status"
)


@dataclass
class ApiResult:
    """Outcome of a single Clio request."""
    ok: bool
    status_code: Optional[int] = None
    data: Any = None
    error: Optional[str] = None
    kind: Optional[ErrorKind] = None

    @property
    def not_found(self) -> bool:
        return self.kind == ErrorKind.NOT_FOUND


class ClioClient:
    """
    Clio API client bound to one access token per call.

    Usage:
        client = ClioClient(config)
        result = await client.get_matter_custom_field_values(matter_id, token)
    """

    def __init__(self, config: EngineConfig, http_client: httpx.AsyncClient = None):
        self.config = config
        self.base_url = config.crm_base_url
        self._client = http_client or httpx.AsyncClient(timeout=config.request_timeout)

    @staticmethod
    def _headers(access_token: str) -> dict:
        return {
            "Authorization": f"Bearer {access_token}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    async def _request(
        self,
        method: str,
        endpoint: str,
        access_token: str,
        params: dict = None,
        json_data: dict = None,
    ) -> ApiResult:
        url = f"{self.base_url}{endpoint}"
        try:
            response = await self._client.request(
                method=method,
                url=url,
                headers=self._headers(access_token),
                params=params,
                json=json_data,
            )
        except httpx.RequestError as e:
            return ApiResult(ok=False, error=str(e) or type(e).__name__, kind=ErrorKind.TRANSPORT)

        if response.is_success:
            try:
                data = response.json() if response.content else {}
            except ValueError:
                body = response.text or ""
                logger.error("Clio %s %s returned a non-JSON body: %s", method, endpoint, body[:200])
                return ApiResult(
                    ok=False,
                    status_code=response.status_code,
                    error=f"{response.status_code}: invalid JSON: {body[:ERROR_BODY_LIMIT]}",
                    kind=ErrorKind.UPSTREAM,
                )
            return ApiResult(ok=True, status_code=response.status_code, data=data)

        if response.status_code == 404:
            return ApiResult(
                ok=False,
                status_code=404,
                error="Not found",
                kind=ErrorKind.NOT_FOUND,
            )

        body = response.text or ""
        logger.error("Clio %s %s failed: %s - %s", method, endpoint, response.status_code, body[:200])
        return ApiResult(
            ok=False,
            status_code=response.status_code,
            error=f"{response.status_code}: {body[:ERROR_BODY_LIMIT]}",
            kind=ErrorKind.UPSTREAM,
        )

    # ========== Matter Endpoints ==========

    async def get_matter_custom_field_values(self, matter_id, access_token: str) -> ApiResult:
        """Get only the custom field value ids (and their parent field) for a matter."""
        return await self._request(
            "GET",
            f"/matters/{matter_id}.json",
            access_token,
            params={"fields": "custom_field_values{id,custom_field}"},
        )

    async def update_matter_custom_field_values(
        self,
        matter_id,
        values: List[Dict[str, Any]],
        access_token: str,
    ) -> ApiResult:
        """PATCH one or more custom field values onto a matter."""
        return await self._request(
            "PATCH",
            f"/matters/{matter_id}.json",
            access_token,
            json_data={"data": {"custom_field_values": values}},
        )

    async def get_matter(self, matter_id, access_token: str, fields: str = MATTER_ATTORNEY_FIELDS) -> ApiResult:
        """Get a specific matter by Clio id."""
        return await self._request("GET", f"/matters/{matter_id}", access_token, params={"fields": fields})

    async def search_matters(self, query: str, access_token: str, fields: str = MATTER_ATTORNEY_FIELDS) -> ApiResult:
        """Full-text matter search (used to find a matter by display number)."""
        return await self._request(
            "GET", "/matters", access_token, params={"query": query, "fields": fields}
        )

    async def find_matter(self, display_number: str, access_token: str, clio_id=None) -> Optional[dict]:
        """
        Resolve a matter by direct id lookup, falling back to a display number search.

        Returns the matter dict or None when Clio has no such matter.
        """
        if clio_id:
            result = await self.get_matter(clio_id, access_token)
            if result.ok:
                return (result.data or {}).get("data")

        result = await self.search_matters(display_number, access_token)
        if not result.ok:
            raise UpstreamError(f"Clio search failed: {result.error}")

        for matter in (result.data or {}).get("data") or []:
            if matter.get("display_number") == display_number:
                return matter
        return None

    # ========== Custom Field Endpoints ==========

    async def get_matter_custom_fields(self, access_token: str) -> ApiResult:
        """List the custom field definitions that apply to matters."""
        return await self._request(
            "GET",
            "/custom_fields.json",
            access_token,
            params={
                "fields": "id,name,parent_type,field_type,displayed,deleted",
                "parent_type": "Matter",
            },
        )

    async def aclose(self) -> None:
        await self._client.aclose()
