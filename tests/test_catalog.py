import logging

import pytest

from comick_offline.core.catalog import CatalogFetcher
from comick_offline.exceptions import FetchError

from conftest import FakeAPIClient, make_chapter


@pytest.mark.asyncio
async def test_stops_on_short_page():
    api = FakeAPIClient(chapters=[make_chapter(i) for i in range(1, 8)])
    fetcher = CatalogFetcher(api, page_size=3)

    chapters = await fetcher.fetch_chapters("series-hid")

    assert [c.chap for c in chapters] == [str(i) for i in range(1, 8)]
    assert api.page_calls == [1, 2, 3]


@pytest.mark.asyncio
async def test_stops_on_empty_page():
    api = FakeAPIClient(chapters=[make_chapter(i) for i in range(1, 7)])
    fetcher = CatalogFetcher(api, page_size=3)

    chapters = await fetcher.fetch_chapters("series-hid")

    assert len(chapters) == 6
    assert api.page_calls == [1, 2, 3]


@pytest.mark.asyncio
async def test_page_ceiling_keeps_collected_records(caplog):
    api = FakeAPIClient()
    api.endless = True
    fetcher = CatalogFetcher(api, page_size=2)

    with caplog.at_level(logging.WARNING, logger="comick_offline"):
        chapters = await fetcher.fetch_chapters("series-hid")

    assert len(api.page_calls) == 100
    assert len(chapters) == 200
    assert "exceeded 100 pages" in caplog.text


@pytest.mark.asyncio
async def test_failing_page_discards_everything():
    api = FakeAPIClient(chapters=[make_chapter(i) for i in range(1, 10)])
    api.fail_on_page = 2
    fetcher = CatalogFetcher(api, page_size=3)

    with pytest.raises(FetchError) as excinfo:
        await fetcher.fetch_chapters("series-hid")

    assert excinfo.value.status == 500


@pytest.mark.asyncio
async def test_filters_language_and_skips_unparsable_records():
    api = FakeAPIClient(
        chapters=[
            make_chapter(1),
            make_chapter(2, lang="fr"),
            {"chap": "3", "lang": "en"},
            make_chapter(4),
        ]
    )
    fetcher = CatalogFetcher(api, page_size=10, language="en")

    chapters = await fetcher.fetch_chapters("series-hid")

    assert [c.chap for c in chapters] == ["1", "4"]
