import asyncio

import pytest

from comick_offline.media.transport import NO_CACHE_HEADERS

from conftest import ScriptedTransport


def make_transport(**kwargs):
    kwargs.setdefault("base_delay", 0)
    kwargs.setdefault("reset_pause", 0)
    return ScriptedTransport(asset_base_url="https://assets.invalid", **kwargs)


async def wait_for_inflight(transport, count=1):
    for _ in range(200):
        if transport.inflight_count >= count:
            return
        await asyncio.sleep(0)
    raise AssertionError("request never started")


def test_requests_carry_cache_bypass_headers():
    assert NO_CACHE_HEADERS["X-Bypass-SW"] == "true"
    assert "no-store" in NO_CACHE_HEADERS["Cache-Control"]
    assert NO_CACHE_HEADERS["Pragma"] == "no-cache"


@pytest.mark.asyncio
async def test_retries_then_succeeds():
    transport = make_transport()
    transport.fail_times["page.webp"] = 2

    result = await transport.fetch("page.webp", "c1-page.webp", index=4)

    assert result.success
    assert result.attempts == 3
    assert result.index == 4
    assert result.payload == b"image:page.webp"
    assert transport.consecutive_failures == 0
    assert transport.reset_triggers == 2


@pytest.mark.asyncio
async def test_exhausted_retries_return_failed_result():
    transport = make_transport()
    transport.fail_keys.add("broken.webp")

    result = await transport.fetch("broken.webp", "c1-broken.webp")

    assert not result.success
    assert not result.cancelled
    assert result.asset_id == "c1-broken.webp"
    assert result.attempts == 3
    assert "503" in result.error
    assert transport.requests == ["broken.webp"] * 3


@pytest.mark.asyncio
async def test_backoff_doubles_per_attempt(monkeypatch):
    transport = make_transport(base_delay=0.5)
    transport.fail_keys.add("broken.webp")
    delays = []

    async def record_sleep(delay):
        delays.append(delay)

    monkeypatch.setattr(transport, "_sleep", record_sleep)

    await transport.fetch("broken.webp", "x")

    assert delays == [0.5, 1.0]


@pytest.mark.asyncio
async def test_cancel_aborts_inflight_and_short_circuits():
    transport = make_transport()
    transport.hang_keys.add("slow.webp")

    task = asyncio.create_task(transport.fetch("slow.webp", "c1-slow.webp"))
    await wait_for_inflight(transport)
    transport.cancel()
    result = await asyncio.wait_for(task, timeout=1)

    assert result.cancelled
    assert not result.success
    assert transport.inflight_count == 0

    later = await transport.fetch("other.webp", "c1-other.webp")
    assert later.cancelled
    assert later.attempts == 0
    assert "other.webp" not in transport.requests


@pytest.mark.asyncio
async def test_cancel_wakes_backoff_sleep():
    transport = make_transport(base_delay=30)
    transport.fail_keys.add("broken.webp")

    task = asyncio.create_task(transport.fetch("broken.webp", "x"))
    for _ in range(100):
        if transport.requests:
            break
        await asyncio.sleep(0)
    await asyncio.sleep(0)
    transport.cancel()
    result = await asyncio.wait_for(task, timeout=1)

    assert result.cancelled


@pytest.mark.asyncio
async def test_consecutive_failures_reset_and_abort_inflight():
    transport = make_transport(consecutive_failure_threshold=5, reset_trigger_threshold=10)
    transport.hang_once.add("slow.webp")
    transport.fail_keys.add("bad.webp")

    slow = asyncio.create_task(transport.fetch("slow.webp", "c1-slow.webp"))
    await wait_for_inflight(transport)

    first = await transport.fetch("bad.webp", "c1-bad.webp")
    assert transport.reset_count == 0
    assert transport.consecutive_failures == 3

    second = await transport.fetch("bad.webp", "c1-bad.webp")
    result = await asyncio.wait_for(slow, timeout=1)

    assert not first.success and not second.success
    assert transport.reset_count == 1
    assert result.success
    assert result.attempts == 2
    assert transport.requests.count("slow.webp") == 2


@pytest.mark.asyncio
async def test_success_clears_consecutive_failures():
    transport = make_transport()
    transport.fail_times["a.webp"] = 2

    await transport.fetch("a.webp", "a")
    await transport.fetch("b.webp", "b")

    assert transport.consecutive_failures == 0
    assert transport.reset_count == 0


@pytest.mark.asyncio
async def test_health_check_only_after_failures():
    transport = make_transport()

    assert await transport.ensure_healthy()
    assert transport.probes == 0

    transport.fail_times["a.webp"] = 1
    await transport.fetch("a.webp", "a")
    transport.probe_status = 404
    assert await transport.ensure_healthy()
    assert transport.probes == 1
    assert transport.reset_count == 0


@pytest.mark.asyncio
async def test_unhealthy_host_forces_reset():
    transport = make_transport()
    transport.fail_times["a.webp"] = 1
    await transport.fetch("a.webp", "a")
    transport.probe_status = 503

    assert not await transport.ensure_healthy()
    assert transport.reset_count == 1
    assert transport.reset_triggers == 0


@pytest.mark.asyncio
async def test_cumulative_failures_trigger_reset_between_successes():
    transport = make_transport(consecutive_failure_threshold=5, reset_trigger_threshold=10)
    keys = [f"p{i}.webp" for i in range(10)]
    for key in keys:
        transport.fail_times[key] = 1

    for key in keys[:9]:
        assert (await transport.fetch(key, key)).success
        assert transport.consecutive_failures == 0

    assert transport.reset_triggers == 9
    assert transport.reset_count == 0

    result = await transport.fetch(keys[9], keys[9])

    assert result.success
    assert transport.reset_count == 1
    assert transport.reset_triggers == 0


@pytest.mark.asyncio
async def test_requests_aborted_by_a_reset_do_not_trigger_another():
    transport = make_transport(consecutive_failure_threshold=5, reset_trigger_threshold=10)
    keys = [f"slow{i}.webp" for i in range(6)]
    transport.hang_once.update(keys)

    tasks = [asyncio.create_task(transport.fetch(key, key)) for key in keys]
    await wait_for_inflight(transport, count=len(keys))
    for _ in range(200):
        if len(transport.requests) == len(keys):
            break
        await asyncio.sleep(0)
    await transport.reset_connections(reason="test")
    results = await asyncio.wait_for(asyncio.gather(*tasks), timeout=1)

    assert all(r.success and r.attempts == 2 for r in results)
    assert transport.reset_count == 1
    assert transport.consecutive_failures == 0
    assert transport.reset_triggers == 0
