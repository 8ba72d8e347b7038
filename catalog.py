from __future__ import annotations
from typing import Any, Dict, Optional
import base64
import logging
import time

import httpx

from config import CatalogConfig, Config

logger = logging.getLogger(__name__)


class CatalogError(Exception):
    pass


class SpotifyClient:
    """
    Minimal Spotify Web API client (client-credentials flow).

    A fresh AsyncClient is opened per call so one instance can be shared
    across event loops (Flask runs each async view in its own loop).
    """

    def __init__(self, config: Optional[CatalogConfig] = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.config = config or Config.catalog
        self._transport = transport
        self._token: Optional[str] = None
        self._expires_at = 0.0

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.config.TIMEOUT, transport=self._transport)

    async def get_token(self) -> str:
        if self._token and time.time() < self._expires_at:
            return self._token
        if not self.config.CLIENT_ID or not self.config.CLIENT_SECRET:
            raise CatalogError("Catalog credentials are not configured (CLIENT_ID / CLIENT_SECRET)")
        auth = base64.b64encode(f"{self.config.CLIENT_ID}:{self.config.CLIENT_SECRET}".encode()).decode()
        async with self._client() as client:
            try:
                resp = await client.post(
                    self.config.TOKEN_URL,
                    data={"grant_type": "client_credentials"},
                    headers={"Authorization": f"Basic {auth}"},
                )
                resp.raise_for_status()
            except httpx.HTTPError as e:
                raise CatalogError(f"Token request failed: {e}") from e
        payload = resp.json()
        self._token = payload["access_token"]
        # refresh a minute early
        self._expires_at = time.time() + float(payload.get("expires_in", 3600)) - 60
        logger.info("Fetched catalog access token")
        return self._token

    async def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        token = await self.get_token()
        async with self._client() as client:
            try:
                resp = await client.get(f"{self.config.API_URL}{path}", params=params,
                                        headers={"Authorization": f"Bearer {token}"})
                resp.raise_for_status()
            except httpx.HTTPError as e:
                raise CatalogError(f"GET {path} failed: {e}") from e
        return resp.json()

    async def search_all(self, query: str, limit: Optional[int] = None, offset: int = 0) -> Dict[str, Any]:
        params = {"q": query, "type": "track,album,artist", "limit": limit or self.config.SEARCH_LIMIT, "offset": offset}
        return await self._get("/search", params)

    async def get_track(self, external_id: str) -> Dict[str, Any]:
        return await self._get(f"/tracks/{external_id}")

    async def get_album(self, external_id: str) -> Dict[str, Any]:
        return await self._get(f"/albums/{external_id}")

    async def get_artist(self, external_id: str) -> Dict[str, Any]:
        return await self._get(f"/artists/{external_id}")
