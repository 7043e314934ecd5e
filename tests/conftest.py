"""Shared fixtures: a temporary library, a fake catalog API and a scripted image transport."""

import asyncio
from datetime import timedelta
from pathlib import Path

import pytest

from comick_offline.exceptions import AssetError, FetchError
from comick_offline.media.transport import AssetTransport
from comick_offline.models.config import SyncConfig
from comick_offline.models.entities import utcnow
from comick_offline.storage.library import LibraryStore


def make_chapter(chap, group="Alpha", hid=None, publish_at=None, lang="en"):
    """Builds a raw chapter record as the listing endpoint returns it."""
    record = {
        "hid": hid or f"{group.lower()}-{chap}",
        "chap": str(chap),
        "lang": lang,
        "up_count": 0,
        "md_chapters_groups": [{"md_groups": {"title": group}}],
    }
    if publish_at is not None:
        record["publish_at"] = publish_at.isoformat()
    return record


def in_one_hour():
    return utcnow() + timedelta(hours=1)


class FakeAPIClient:
    """In-memory stand-in for ComickAPIClient."""

    def __init__(self, chapters=None, pages_per_chapter=3, hid="series-hid"):
        self.series = {
            "comic": {
                "hid": hid,
                "slug": "test-series",
                "title": "Test Series",
                "cover_url": "https://example.invalid/cover.jpg",
            }
        }
        self.chapters = list(chapters or [])
        self.pages_per_chapter = pages_per_chapter
        self.manifests = {}
        self.failing_manifests = set()
        self.fail_on_page = None
        self.endless = False
        self.page_calls = []
        self.manifest_calls = []

    async def fetch_series_info(self, slug):
        return self.series

    async def fetch_chapter_page(self, series_hid, page, limit, lang=None):
        self.page_calls.append(page)
        if self.fail_on_page == page:
            raise FetchError(f"Listing page {page} failed", status=500)
        if self.endless:
            return [make_chapter(page * 1000 + i) for i in range(limit)]
        start = (page - 1) * limit
        return self.chapters[start : start + limit]

    async def fetch_chapter_images(self, chapter_hid):
        self.manifest_calls.append(chapter_hid)
        if chapter_hid in self.failing_manifests:
            raise FetchError(f"Images of {chapter_hid} unavailable", status=503)
        if chapter_hid in self.manifests:
            return self.manifests[chapter_hid]
        return [
            {"b2key": f"{chapter_hid}-{i}.webp", "w": 800, "h": 1200}
            for i in range(self.pages_per_chapter)
        ]


class ScriptedTransport(AssetTransport):
    """
    AssetTransport whose network calls are replaced by a script.

    ``fail_keys`` always fail, ``fail_times`` fail the first N requests of a key,
    ``hang_keys`` never answer and ``hang_once`` hangs only the first request.
    ``hook`` is awaited with (transport, key) before every answer.
    """

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.fail_keys = set()
        self.fail_times = {}
        self.hang_keys = set()
        self.hang_once = set()
        self.hook = None
        self.requests = []
        self.probe_status = 404
        self.probes = 0

    async def _request(self, url):
        key = url.rsplit("/", 1)[-1]
        self.requests.append(key)
        if self.hook is not None:
            await self.hook(self, key)
        if key in self.hang_keys:
            await asyncio.Event().wait()
        if key in self.hang_once:
            self.hang_once.discard(key)
            await asyncio.Event().wait()
        if key in self.fail_keys:
            raise AssetError("HTTP 503")
        if self.fail_times.get(key, 0) > 0:
            self.fail_times[key] -= 1
            raise AssetError("HTTP 502")
        return f"image:{key}".encode()

    async def _probe_request(self):
        self.probes += 1
        return self.probe_status


class TransportFactory:
    """Creates one ScriptedTransport per run with the configured script."""

    def __init__(self):
        self.fail_keys = set()
        self.hook = None
        self.created = []

    def __call__(self, config):
        transport = ScriptedTransport.from_config(config)
        transport.fail_keys = set(self.fail_keys)
        transport.hook = self.hook
        self.created.append(transport)
        return transport


@pytest.fixture
def config(tmp_path: Path) -> SyncConfig:
    """A configuration with all pauses and backoff delays disabled."""
    return SyncConfig(
        page_size=50,
        max_workers=4,
        batch_size=10,
        retry_attempts=3,
        retry_base_delay=0,
        window_pause=0,
        batch_pause=0,
        failure_pause=0,
        reset_pause=0,
        config_path=str(tmp_path),
        library_path=str(tmp_path / "library"),
    )


@pytest.fixture
def store(tmp_path: Path) -> LibraryStore:
    return LibraryStore(tmp_path / "library")


@pytest.fixture
def transport_factory() -> TransportFactory:
    return TransportFactory()


class ProgressRecorder:
    def __init__(self):
        self.events = []

    def __call__(self, completed, total, status, phase):
        self.events.append((completed, total, status, phase))

    def statuses(self, phase):
        return [e[2] for e in self.events if e[3] == phase]


@pytest.fixture
def progress() -> ProgressRecorder:
    return ProgressRecorder()
