from __future__ import annotations

from typing import Any

import httpx


class MarketplaceClient:
    """Machine-authenticated client for the marketplace API."""

    def __init__(
        self,
        base_url: str,
        module_id: str,
        api_key: str,
        *,
        timeout_seconds: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.transport = transport
        self.headers = {
            "X-Module-Id": module_id,
            "X-API-Key": api_key,
        }

    async def healthz(self) -> bool:
        async with self._client() as client:
            response = await client.get(f"{self.base_url}/healthz")
            return response.status_code == 200

    async def expire_due(self, limit: int = 100) -> int:
        async with self._client() as client:
            response = await client.post(
                f"{self.base_url}/moderation/expire-due",
                params={"limit": limit},
                headers=self.headers,
            )
            response.raise_for_status()
            payload: dict[str, Any] = response.json()
            return int(payload.get("count", 0))

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout_seconds, transport=self.transport)
