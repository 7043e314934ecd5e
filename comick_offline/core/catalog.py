"""
Fetches the complete chapter listing of a series page by page.
"""

import logging
from typing import Any, Dict, List

from pydantic import ValidationError

from comick_offline.models.entities import ChapterRecord

log = logging.getLogger(__name__)

MAX_PAGES = 100


class CatalogFetcher:
    """
    Walks the paginated chapter listing of a series.

    The listing is all-or-nothing: a FetchError on any page propagates and the
    pages collected so far are discarded.
    """

    def __init__(
        self,
        api_client,
        page_size: int = 100,
        language: str = "en",
        max_pages: int = MAX_PAGES,
    ):
        """
        Args:
            api_client: The ComickAPIClient instance.
            page_size: Number of records requested per page.
            language: Only records in this language are kept.
            max_pages: Safety bound on the number of pages requested.
        """
        self.api_client = api_client
        self.page_size = page_size
        self.language = language
        self.max_pages = max_pages

    async def fetch_raw(self, series_hid: str) -> List[Dict[str, Any]]:
        """Returns the concatenated raw records of every page."""
        collected: List[Dict[str, Any]] = []
        page = 1
        while True:
            if page > self.max_pages:
                log.warning(
                    f"[yellow]Chapter listing for '{series_hid}' exceeded "
                    f"{self.max_pages} pages; keeping {len(collected)} records.[/yellow]"
                )
                break

            records = await self.api_client.fetch_chapter_page(
                series_hid, page, self.page_size, lang=self.language
            )
            log.debug(f"Listing page {page} for '{series_hid}': {len(records)} records")
            if not records:
                break
            collected.extend(records)
            if len(records) < self.page_size:
                break
            page += 1
        return collected

    async def fetch_chapters(self, series_hid: str) -> List[ChapterRecord]:
        """
        Returns every chapter record of the series in the configured language,
        in listing order.

        Raises:
            FetchError: If any page request fails.
        """
        raw = await self.fetch_raw(series_hid)
        chapters = []
        for item in raw:
            try:
                record = ChapterRecord.model_validate(item)
            except ValidationError as e:
                log.debug(f"Skipping unparsable chapter record: {e.error_count()} error(s)")
                continue
            if self.language and record.lang != self.language:
                continue
            chapters.append(record)
        log.debug(
            f"Catalog for '{series_hid}': {len(chapters)} of {len(raw)} records kept"
        )
        return chapters
