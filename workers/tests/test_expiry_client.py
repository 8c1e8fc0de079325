import asyncio
import json

import httpx
import pytest

from bazaar_workers.services.api_client import MarketplaceClient


def test_expire_due_posts_module_credentials_and_limit() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"count": 3})

    client = MarketplaceClient(
        "http://api.test/",
        module_id="listing-expiry",
        api_key="secret",
        transport=httpx.MockTransport(handler),
    )

    assert asyncio.run(client.expire_due(limit=25)) == 3
    request = seen[0]
    assert request.method == "POST"
    assert request.url.path == "/moderation/expire-due"
    assert request.url.params["limit"] == "25"
    assert request.headers["X-Module-Id"] == "listing-expiry"
    assert request.headers["X-API-Key"] == "secret"


def test_expire_due_raises_on_rejected_credentials() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, content=json.dumps({"detail": "invalid module credentials"}))

    client = MarketplaceClient("http://api.test", "listing-expiry", "wrong", transport=httpx.MockTransport(handler))

    with pytest.raises(httpx.HTTPStatusError):
        asyncio.run(client.expire_due())


def test_healthz_reports_status() -> None:
    client = MarketplaceClient(
        "http://api.test",
        "listing-expiry",
        "secret",
        transport=httpx.MockTransport(lambda request: httpx.Response(503)),
    )
    assert asyncio.run(client.healthz()) is False
