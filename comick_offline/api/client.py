"""
Async client for the comick catalog API with rate limiting and circuit breaker
protection.
"""

import asyncio
import logging
import time
from typing import Any, Dict, List, Optional

import aiohttp

from comick_offline.exceptions import FetchError
from comick_offline.models.config import DEFAULT_API_BASE_URL
from comick_offline.utils.circuit_breaker import CircuitBreaker, CircuitBreakerError

from .rate_limiter import AdaptiveRateLimiter

log = logging.getLogger(__name__)

USER_AGENT = "ComickOfflineReader/1.0"


def _retry_after_seconds(value: Optional[str]) -> Optional[float]:
    """Returns a Retry-After delay in seconds, or None for missing or date values."""
    if not value or not value.strip().isdigit():
        return None
    return float(value.strip())


class ComickAPIClient:
    """
    Client for the JSON endpoints the sync engine depends on: series metadata,
    the paginated chapter listing and per-chapter image manifests.

    Every call goes through an adaptive rate limiter and a circuit breaker. Any
    failure is reported as a FetchError, carrying the HTTP status when known.
    """

    def __init__(self, base_url: str = DEFAULT_API_BASE_URL, max_workers: int = 8):
        """
        Args:
            base_url: Root URL of the catalog API.
            max_workers: Used to size the connection pool.
        """
        self.base_url = base_url.rstrip("/") + "/"
        self.max_workers = max_workers

        self._session: Optional[aiohttp.ClientSession] = None
        self._rate_limiter = AdaptiveRateLimiter()
        self._circuit_breaker = CircuitBreaker(
            name="catalog",
            failure_threshold=5,
            recovery_timeout=60,
            success_threshold=2,
        )

    async def _initialize_session(self) -> aiohttp.ClientSession:
        """Ensures an active aiohttp session is available."""
        if self._session is None or self._session.closed:
            connector = aiohttp.TCPConnector(
                limit=self.max_workers * 2,
                limit_per_host=self.max_workers,
                ttl_dns_cache=300,
                enable_cleanup_closed=True,
            )
            self._session = aiohttp.ClientSession(
                connector=connector,
                headers={
                    "User-Agent": USER_AGENT,
                    "Accept": "application/json",
                    "Accept-Encoding": "gzip, deflate",
                },
                timeout=aiohttp.ClientTimeout(total=60, connect=15, sock_read=30),
            )
        return self._session

    async def close(self) -> None:
        """Gracefully closes the aiohttp session."""
        if self._session and not self._session.closed:
            await self._session.close()

    async def __aenter__(self) -> "ComickAPIClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def api_call(self, path: str, **params: Any) -> Any:
        """
        Performs a GET request against the catalog API and returns the decoded JSON.

        Raises:
            FetchError: On a non-success status, a transport error, a timeout or
                an open circuit.
        """
        session = await self._initialize_session()
        url = self.base_url + path.lstrip("/")

        try:
            async with self._circuit_breaker:
                await self._rate_limiter.acquire()
                start_time = time.monotonic()

                async with session.get(url, params=params) as r:
                    duration_ms = (time.monotonic() - start_time) * 1000
                    log.debug(f"GET {path} -> {r.status} in {duration_ms:.0f}ms")

                    if r.status == 429:
                        await self._rate_limiter.on_429(
                            _retry_after_seconds(r.headers.get("Retry-After"))
                        )
                    if r.status != 200:
                        raise FetchError(
                            f"Request to '{path}' failed with HTTP {r.status}",
                            status=r.status,
                        )
                    return await r.json(content_type=None)

        except CircuitBreakerError as e:
            log.error(f"[red]Circuit breaker is open for catalog calls: {e}[/red]")
            raise FetchError(str(e)) from e
        except FetchError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            log.debug(f"API call to {path} failed: {e!r}")
            raise FetchError(f"Request to '{path}' failed: {e!r}") from e

    # Public API Methods
    async def fetch_series_info(self, slug: str) -> Dict[str, Any]:
        """Returns the series descriptor (``comic``, ``authors``, ``artists``...)."""
        data = await self.api_call(f"comic/{slug}/", tachiyomi="true")
        if not isinstance(data, dict) or "comic" not in data:
            raise FetchError(f"Unexpected series response for '{slug}'")
        return data

    async def fetch_chapter_page(
        self, series_hid: str, page: int, limit: int, lang: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        """Returns one page (1-indexed) of the series chapter listing."""
        params: Dict[str, Any] = {"page": page, "limit": limit}
        if lang:
            params["lang"] = lang
        data = await self.api_call(f"comic/{series_hid}/chapters", **params)
        return (data or {}).get("chapters") or []

    async def fetch_chapter_images(self, chapter_hid: str) -> List[Dict[str, Any]]:
        """Returns the ordered image manifest of a chapter."""
        data = await self.api_call(f"chapter/{chapter_hid}/get_images")
        if isinstance(data, dict):
            data = data.get("images") or data.get("chapter", {}).get("md_images", [])
        return data or []
