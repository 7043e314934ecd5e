"""
Low-level download of page images over HTTP with retries, abortable in-flight
requests and a failure-driven connection reset.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Optional, TypeVar

import aiohttp

from comick_offline.api.client import USER_AGENT
from comick_offline.exceptions import AssetError
from comick_offline.models.config import DEFAULT_ASSET_BASE_URL, SyncConfig

log = logging.getLogger(__name__)

T = TypeVar("T")

# X-Bypass-SW is honoured by the offline cache layer; the others by HTTP caches.
NO_CACHE_HEADERS = {
    "User-Agent": USER_AGENT,
    "Cache-Control": "no-cache, no-store, must-revalidate",
    "Pragma": "no-cache",
    "X-Bypass-SW": "true",
}


@dataclass
class AssetResult:
    """Outcome of downloading one page image. ``index`` is its manifest position."""

    asset_id: str
    index: int = 0
    success: bool = False
    payload: Optional[bytes] = field(default=None, repr=False)
    error: Optional[str] = None
    cancelled: bool = False
    attempts: int = 0


class AssetTransport:
    """
    Downloads single assets from the image host.

    One instance is meant to serve one download session. It keeps a rolling
    health record across all calls: every failed attempt counts towards a
    consecutive-failure counter (cleared by any success) and a cumulative
    reset-trigger counter. Reaching either threshold forces a connection reset
    that aborts all in-flight requests and pauses before traffic resumes.
    """

    def __init__(
        self,
        asset_base_url: str = DEFAULT_ASSET_BASE_URL,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        request_timeout: float = 12.0,
        consecutive_failure_threshold: int = 5,
        reset_trigger_threshold: int = 10,
        reset_pause: float = 1.0,
        probe_path: str = "__health__",
        max_workers: int = 8,
    ):
        self.asset_base_url = asset_base_url.rstrip("/")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.request_timeout = request_timeout
        self.consecutive_failure_threshold = consecutive_failure_threshold
        self.reset_trigger_threshold = reset_trigger_threshold
        self.reset_pause = reset_pause
        self.probe_path = probe_path
        self.max_workers = max_workers

        self.reset_count = 0
        self._session: Optional[aiohttp.ClientSession] = None
        self._inflight: set[asyncio.Future] = set()
        self._cancelled = False
        self._cancel_event = asyncio.Event()
        self._ready = asyncio.Event()
        self._ready.set()
        self._reset_lock = asyncio.Lock()
        self._consecutive_failures = 0
        self._reset_triggers = 0

    @classmethod
    def from_config(cls, config: SyncConfig) -> "AssetTransport":
        return cls(
            asset_base_url=config.asset_base_url,
            max_attempts=config.retry_attempts,
            base_delay=config.retry_base_delay,
            request_timeout=config.request_timeout,
            consecutive_failure_threshold=config.consecutive_failure_threshold,
            reset_trigger_threshold=config.reset_trigger_threshold,
            reset_pause=config.reset_pause,
            probe_path=config.probe_path,
            max_workers=config.max_workers,
        )

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def inflight_count(self) -> int:
        return len(self._inflight)

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    @property
    def reset_triggers(self) -> int:
        return self._reset_triggers

    def asset_url(self, asset_key: str) -> str:
        return f"{self.asset_base_url}/{asset_key.lstrip('/')}"

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            connector = aiohttp.TCPConnector(
                limit=self.max_workers * 2,
                limit_per_host=self.max_workers,
                ttl_dns_cache=600,
                keepalive_timeout=30,
                enable_cleanup_closed=True,
            )
            self._session = aiohttp.ClientSession(connector=connector)
            log.debug(f"Created asset pool with limit_per_host={self.max_workers}")
        return self._session

    async def _close_session(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def close(self) -> None:
        """Aborts anything still running and closes the connection pool."""
        self._abort_inflight()
        await self._close_session()

    async def _request(self, url: str) -> bytes:
        """Performs a single GET and returns the non-empty body."""
        session = await self._get_session()
        async with session.get(
            url,
            headers=NO_CACHE_HEADERS,
            timeout=aiohttp.ClientTimeout(total=self.request_timeout),
        ) as response:
            if response.status != 200:
                raise AssetError(f"HTTP {response.status}")
            payload = await response.read()
        if not payload:
            raise AssetError("Empty response body")
        return payload

    async def _probe_request(self) -> int:
        session = await self._get_session()
        async with session.head(
            self.asset_url(self.probe_path),
            headers=NO_CACHE_HEADERS,
            timeout=aiohttp.ClientTimeout(total=min(5.0, self.request_timeout)),
        ) as response:
            return response.status

    async def _tracked(self, coro: Awaitable[T]) -> T:
        """
        Runs ``coro`` as a task registered in the in-flight set so that a reset
        or cancel can abort it. An aborted request raises AssetError.
        """
        task = asyncio.ensure_future(coro)
        self._inflight.add(task)
        try:
            await asyncio.wait({task})
        finally:
            self._inflight.discard(task)
            if not task.done():
                task.cancel()
        if task.cancelled():
            raise AssetError("Request aborted")
        return task.result()

    def _abort_inflight(self) -> int:
        tasks = list(self._inflight)
        for task in tasks:
            task.cancel()
        self._inflight.clear()
        return len(tasks)

    async def _sleep(self, delay: float) -> None:
        """Sleeps for ``delay`` seconds, waking early if the transport is cancelled."""
        if delay <= 0 or self._cancelled:
            return
        try:
            await asyncio.wait_for(self._cancel_event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            pass

    def _cancelled_result(self, asset_id: str, index: int, attempts: int) -> AssetResult:
        return AssetResult(
            asset_id=asset_id,
            index=index,
            success=False,
            error="cancelled",
            cancelled=True,
            attempts=attempts,
        )

    def _thresholds_reached(self) -> bool:
        return (
            self._consecutive_failures >= self.consecutive_failure_threshold
            or self._reset_triggers >= self.reset_trigger_threshold
        )

    async def _record_failure(self, generation: int) -> None:
        # Requests that started before the last reset belong to counters it cleared.
        if generation != self.reset_count:
            return
        self._consecutive_failures += 1
        self._reset_triggers += 1
        if self._thresholds_reached():
            await self.reset_connections(
                force=False,
                reason=(
                    f"{self._consecutive_failures} consecutive / "
                    f"{self._reset_triggers} total failures"
                ),
            )

    async def fetch(self, asset_key: str, asset_id: str, index: int = 0) -> AssetResult:
        """
        Downloads one asset, retrying with exponential backoff.

        Never raises for download failures: exhausting every attempt returns a
        failed AssetResult, and cancellation returns one with ``cancelled=True``.
        """
        url = self.asset_url(asset_key)
        last_error = "no attempt made"

        for attempt in range(self.max_attempts):
            if not self._ready.is_set():
                await self._ready.wait()
            if self._cancelled:
                return self._cancelled_result(asset_id, index, attempt)

            generation = self.reset_count
            try:
                payload = await self._tracked(self._request(url))
            except (AssetError, aiohttp.ClientError, asyncio.TimeoutError) as e:
                if self._cancelled:
                    return self._cancelled_result(asset_id, index, attempt + 1)
                last_error = str(e) or type(e).__name__
                log.debug(
                    f"Attempt {attempt + 1}/{self.max_attempts} for '{asset_key}' "
                    f"failed: {last_error}"
                )
                await self._record_failure(generation)
                if attempt + 1 < self.max_attempts:
                    await self._sleep(self.base_delay * (2**attempt))
                continue

            self._consecutive_failures = 0
            return AssetResult(
                asset_id=asset_id,
                index=index,
                success=True,
                payload=payload,
                attempts=attempt + 1,
            )

        if self._cancelled:
            return self._cancelled_result(asset_id, index, self.max_attempts)
        return AssetResult(
            asset_id=asset_id,
            index=index,
            success=False,
            error=last_error,
            attempts=self.max_attempts,
        )

    async def reset_connections(self, force: bool = True, reason: str = "") -> bool:
        """
        Aborts every in-flight request, drops the connection pool, pauses and
        clears the failure counters. New requests wait until the reset is over.

        With ``force=False`` the reset only happens if a threshold is still
        reached once the lock is held, so concurrent failures trigger one reset.
        """
        async with self._reset_lock:
            if not force and not self._thresholds_reached():
                return False
            self._ready.clear()
            try:
                aborted = self._abort_inflight()
                log.warning(
                    f"[yellow]Resetting image connections"
                    f"{f' ({reason})' if reason else ''}; "
                    f"aborted {aborted} request(s).[/yellow]"
                )
                await self._close_session()
                await self._sleep(self.reset_pause)
                self._consecutive_failures = 0
                self._reset_triggers = 0
                self.reset_count += 1
            finally:
                self._ready.set()
            return True

    async def probe(self) -> bool:
        """
        Sends a HEAD request to a synthetic path. Any answer below 500,
        including 404, means the host is reachable.
        """
        try:
            status = await self._probe_request()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            log.debug(f"Health probe failed: {e!r}")
            return False
        return status < 500

    async def ensure_healthy(self) -> bool:
        """Probes the host if failures were seen since the last reset and resets if it is unhealthy."""
        if self._cancelled or self._reset_triggers == 0:
            return True
        if await self.probe():
            return True
        await self.reset_connections(reason="health probe failed")
        return False

    def cancel(self) -> None:
        """Aborts all in-flight requests and makes every later call return a cancelled result."""
        if self._cancelled:
            return
        self._cancelled = True
        self._cancel_event.set()
        aborted = self._abort_inflight()
        log.debug(f"Transport cancelled; aborted {aborted} in-flight request(s).")
