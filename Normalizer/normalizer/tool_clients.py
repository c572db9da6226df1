"""
Integrated tool API clients - read-only lookups used by the tool caches.

Both clients degrade gracefully: any transport or HTTP error is logged and
turned into None, so a lookup miss never fails a record.
"""

import logging
from typing import Any, Dict, List, Optional

import httpx

from .config import config

logger = logging.getLogger("normalizer.tool_clients")


class _ToolApiClient:
    """Shared httpx lifecycle and GET handling."""

    tool_name = "tool"

    def __init__(self, base_url: str, timeout: float = config.TOOL_API_TIMEOUT_SECONDS,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport
        self._http: Optional[httpx.AsyncClient] = None

    def _headers(self) -> Dict[str, str]:
        return {"Accept": "application/json"}

    async def initialize(self):
        self._http = httpx.AsyncClient(
            base_url=self.base_url,
            headers=self._headers(),
            timeout=self.timeout,
            follow_redirects=True,
            transport=self._transport,
        )
        logger.info(f"✅ {self.tool_name} API client initialized ({self.base_url})")

    async def shutdown(self):
        if self._http:
            await self._http.aclose()
            self._http = None

    async def _get_json(self, path: str) -> Optional[Any]:
        if not self._http:
            logger.warning(f"⚠️ {self.tool_name} API client is not initialized")
            return None

        try:
            resp = await self._http.get(path)
        except httpx.ConnectError:
            logger.warning(f"⚠️ {self.tool_name} API unavailable: {self.base_url}{path}")
            return None
        except httpx.TimeoutException:
            logger.warning(f"⚠️ {self.tool_name} API timeout: {self.base_url}{path}")
            return None
        except httpx.HTTPError as e:
            logger.error(f"❌ {self.tool_name} API request failed: {path}: {e}")
            return None

        if resp.status_code == 404:
            logger.debug(f"{self.tool_name} API 404: {path}")
            return None
        if resp.status_code != 200:
            logger.error(f"❌ {self.tool_name} API returned {resp.status_code} for {path}")
            return None

        try:
            return resp.json()
        except ValueError as e:
            logger.error(f"❌ {self.tool_name} API returned invalid JSON for {path}: {e}")
            return None


class TacticalRmmClient(_ToolApiClient):
    """Tactical RMM REST API (X-API-KEY auth)."""

    tool_name = "Tactical RMM"

    def __init__(self, base_url: str = config.TACTICAL_API_URL,
                 api_key: Optional[str] = config.TACTICAL_API_KEY, **kwargs):
        super().__init__(base_url, **kwargs)
        self.api_key = api_key

    def _headers(self) -> Dict[str, str]:
        headers = super()._headers()
        if self.api_key:
            headers["X-API-KEY"] = self.api_key
        return headers

    async def get_all_agents(self) -> Optional[List[Dict[str, Any]]]:
        """All agents as returned by GET /agents/ (each has `pk` and `agent_id`)."""
        data = await self._get_json("/agents/")
        if data is None:
            return None
        if not isinstance(data, list):
            logger.error(f"❌ Unexpected agents payload type: {type(data).__name__}")
            return None
        return data

    async def get_script(self, script_id: int) -> Optional[Dict[str, Any]]:
        data = await self._get_json(f"/scripts/{script_id}/")
        return data if isinstance(data, dict) else None


class FleetMdmClient(_ToolApiClient):
    """Fleet REST API (bearer token auth)."""

    tool_name = "Fleet MDM"

    def __init__(self, base_url: str = config.FLEET_API_URL,
                 api_token: Optional[str] = config.FLEET_API_TOKEN, **kwargs):
        super().__init__(base_url, **kwargs)
        self.api_token = api_token

    def _headers(self) -> Dict[str, str]:
        headers = super()._headers()
        if self.api_token:
            headers["Authorization"] = f"Bearer {self.api_token}"
        return headers

    async def get_host(self, host_id: int) -> Optional[Dict[str, Any]]:
        data = await self._get_json(f"/api/v1/fleet/hosts/{host_id}")
        if not isinstance(data, dict):
            return None
        host = data.get("host")
        return host if isinstance(host, dict) else None

    async def get_query(self, query_id: int) -> Optional[Dict[str, Any]]:
        data = await self._get_json(f"/api/v1/fleet/queries/{query_id}")
        if not isinstance(data, dict):
            return None
        query = data.get("query")
        return query if isinstance(query, dict) else None
