"""Asset transport and catalog client against a local aiohttp server."""

import asyncio
from collections import Counter
from contextlib import asynccontextmanager

import pytest
from aiohttp import test_utils, web

from comick_offline.api.client import ComickAPIClient
from comick_offline.api.rate_limiter import AdaptiveRateLimiter
from comick_offline.exceptions import FetchError
from comick_offline.media.transport import AssetTransport


@asynccontextmanager
async def serving(app):
    async with test_utils.TestServer(app) as server:
        yield str(server.make_url("/")).rstrip("/")


def image_host():
    """An image host whose behaviour depends on the requested key."""
    hits = Counter()
    headers = {}

    async def asset(request):
        key = request.match_info["key"]
        hits[key] += 1
        headers[key] = dict(request.headers)
        if key == "flaky.webp" and hits[key] <= 2:
            return web.Response(status=503)
        if key == "slow.webp":
            await asyncio.sleep(0.5)
        if key == "empty.webp":
            return web.Response(body=b"")
        if key in ("missing.webp", "__health__"):
            return web.Response(status=404)
        if key == "__down__":
            return web.Response(status=503)
        return web.Response(body=f"image:{key}".encode(), content_type="image/webp")

    app = web.Application()
    app.router.add_route("*", "/{key}", asset)
    return app, hits, headers


def make_transport(base_url, **kwargs):
    kwargs.setdefault("base_delay", 0)
    kwargs.setdefault("reset_pause", 0)
    return AssetTransport(asset_base_url=base_url, **kwargs)


@pytest.mark.asyncio
async def test_transport_downloads_with_cache_bypass_headers():
    app, hits, headers = image_host()
    async with serving(app) as base_url:
        transport = make_transport(base_url)
        try:
            result = await transport.fetch("ok.webp", "c1-ok.webp", index=2)
        finally:
            await transport.close()

    assert result.success
    assert result.payload == b"image:ok.webp"
    assert result.index == 2
    assert hits["ok.webp"] == 1
    assert headers["ok.webp"]["X-Bypass-SW"] == "true"
    assert headers["ok.webp"]["Pragma"] == "no-cache"
    assert "no-store" in headers["ok.webp"]["Cache-Control"]


@pytest.mark.asyncio
async def test_transport_retries_error_status_until_success():
    app, hits, _ = image_host()
    async with serving(app) as base_url:
        transport = make_transport(base_url)
        try:
            result = await transport.fetch("flaky.webp", "c1-flaky.webp")
        finally:
            await transport.close()

    assert result.success
    assert result.attempts == 3
    assert hits["flaky.webp"] == 3
    assert transport.reset_triggers == 2
    assert transport.consecutive_failures == 0


@pytest.mark.asyncio
async def test_transport_gives_up_on_missing_asset():
    app, hits, _ = image_host()
    async with serving(app) as base_url:
        transport = make_transport(base_url)
        try:
            result = await transport.fetch("missing.webp", "c1-missing.webp")
        finally:
            await transport.close()

    assert not result.success
    assert result.error == "HTTP 404"
    assert hits["missing.webp"] == 3


@pytest.mark.asyncio
async def test_transport_treats_empty_body_as_failure():
    app, hits, _ = image_host()
    async with serving(app) as base_url:
        transport = make_transport(base_url)
        try:
            result = await transport.fetch("empty.webp", "c1-empty.webp")
        finally:
            await transport.close()

    assert not result.success
    assert result.error == "Empty response body"
    assert hits["empty.webp"] == 3


@pytest.mark.asyncio
async def test_transport_request_timeout():
    app, _, _ = image_host()
    async with serving(app) as base_url:
        transport = make_transport(base_url, request_timeout=0.1, max_attempts=1)
        try:
            result = await transport.fetch("slow.webp", "c1-slow.webp")
        finally:
            await transport.close()

    assert not result.success
    assert not result.cancelled
    assert result.attempts == 1
    assert transport.reset_triggers == 1


@pytest.mark.asyncio
async def test_health_check_accepts_not_found_and_rejects_server_errors():
    app, hits, _ = image_host()
    async with serving(app) as base_url:
        healthy = make_transport(base_url)
        down = make_transport(base_url, probe_path="__down__")
        try:
            assert await healthy.probe()
            assert not await down.probe()
        finally:
            await healthy.close()
            await down.close()

    assert hits["__health__"] == 1
    assert hits["__down__"] == 1


def catalog_api():
    """A catalog API with a known series, a busy one, a missing one and a broken manifest."""
    seen = []

    async def series(request):
        slug = request.match_info["slug"]
        seen.append(("series", slug, dict(request.query)))
        if slug == "busy":
            return web.Response(status=429, headers={"Retry-After": "3"})
        if slug == "gone":
            return web.Response(status=404)
        return web.json_response({"comic": {"hid": "h1", "slug": slug, "title": "Known"}})

    async def chapters(request):
        seen.append(("chapters", request.match_info["hid"], dict(request.query)))
        return web.json_response({"chapters": [{"hid": "c1", "chap": "1"}]})

    async def images(request):
        hid = request.match_info["hid"]
        seen.append(("images", hid, dict(request.query)))
        if hid == "broken":
            return web.Response(status=500)
        return web.json_response([{"b2key": "p1.webp"}, {"b2key": "p2.webp"}])

    app = web.Application()
    app.router.add_get("/comic/{slug}/", series)
    app.router.add_get("/comic/{hid}/chapters", chapters)
    app.router.add_get("/chapter/{hid}/get_images", images)
    return app, seen


def make_client(base_url):
    client = ComickAPIClient(base_url=base_url)
    client._rate_limiter = AdaptiveRateLimiter(
        initial_calls_per_second=1000, max_calls_per_second=1000
    )
    return client


@pytest.mark.asyncio
async def test_client_endpoints():
    app, seen = catalog_api()
    async with serving(app) as base_url:
        async with make_client(base_url) as client:
            info = await client.fetch_series_info("known")
            page = await client.fetch_chapter_page("h1", 2, 50, "en")
            manifest = await client.fetch_chapter_images("c1")

    assert info["comic"]["hid"] == "h1"
    assert page == [{"hid": "c1", "chap": "1"}]
    assert [m["b2key"] for m in manifest] == ["p1.webp", "p2.webp"]
    assert seen[0] == ("series", "known", {"tachiyomi": "true"})
    assert seen[1] == ("chapters", "h1", {"page": "2", "limit": "50", "lang": "en"})


@pytest.mark.asyncio
async def test_client_error_status_is_fetch_error():
    app, _ = catalog_api()
    async with serving(app) as base_url:
        async with make_client(base_url) as client:
            with pytest.raises(FetchError) as excinfo:
                await client.fetch_series_info("gone")

    assert excinfo.value.status == 404


@pytest.mark.asyncio
async def test_client_rate_limited_response_slows_down():
    app, _ = catalog_api()
    async with serving(app) as base_url:
        async with make_client(base_url) as client:
            with pytest.raises(FetchError) as excinfo:
                await client.fetch_series_info("busy")
            limiter = client._rate_limiter

    assert excinfo.value.status == 429
    assert limiter.rate == 500
    assert 0 < limiter.blocked_for <= 3


@pytest.mark.asyncio
async def test_client_open_circuit_fails_without_calling_the_api():
    app, seen = catalog_api()
    async with serving(app) as base_url:
        async with make_client(base_url) as client:
            for _ in range(5):
                with pytest.raises(FetchError) as excinfo:
                    await client.fetch_chapter_images("broken")
                assert excinfo.value.status == 500

            with pytest.raises(FetchError) as excinfo:
                await client.fetch_chapter_images("broken")

    assert excinfo.value.status is None
    assert "open" in str(excinfo.value)
    assert len(seen) == 5
