"""Tests for the ASGI application wiring."""

from __future__ import annotations

import httpx
import pytest
from litestar.testing import AsyncTestClient

from media_edge import MediaEdgeProxy, create_app


@pytest.fixture
def app_proxy(origin_settings, transform_settings, cache_settings, upstream):
    return MediaEdgeProxy(
        origin_settings,
        transform_settings,
        cache_settings,
        transport=httpx.MockTransport(upstream),
    )


class TestApp:
    @pytest.mark.anyio
    async def test_health(self, app_proxy, upstream):
        async with AsyncTestClient(app=create_app(app_proxy)) as client:
            response = await client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}
        assert upstream.requests == []

    @pytest.mark.anyio
    async def test_image_request(self, app_proxy, upstream):
        async with AsyncTestClient(app=create_app(app_proxy)) as client:
            response = await client.get(
                "/images/cat.png", headers={"Accept": "image/webp,*/*"}
            )
        assert response.status_code == 200
        assert response.content == b"payload"
        assert response.headers["x-requested-format"] == "webp"
        assert response.headers["x-media-class"] == "image"
        assert len(upstream.requests) == 1

    @pytest.mark.anyio
    async def test_root_is_not_found(self, app_proxy, upstream):
        async with AsyncTestClient(app=create_app(app_proxy)) as client:
            response = await client.get("/")
        assert response.status_code == 404
        assert upstream.requests == []

    def test_cors_methods_match_handled_methods(self, app_proxy):
        app = create_app(app_proxy)
        assert app.cors_config is not None
        assert "HEAD" not in app.cors_config.allow_methods
        assert "GET" in app.cors_config.allow_methods

    @pytest.mark.anyio
    async def test_head_is_not_allowed(self, app_proxy, upstream):
        async with AsyncTestClient(app=create_app(app_proxy)) as client:
            response = await client.head("/images/cat.png")
        assert response.status_code == 405
        assert upstream.requests == []
