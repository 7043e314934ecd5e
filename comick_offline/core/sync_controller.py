"""
The main orchestrator for downloading a series, updating it with new chapters
and resuming interrupted runs.
"""

import inspect
import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence

from pydantic import ValidationError
from rich.markup import escape

from comick_offline.exceptions import (
    ChapterError,
    FetchError,
    FutureChaptersPending,
    SeriesExistsError,
    SyncInterruptedError,
)
from comick_offline.media.transport import AssetTransport
from comick_offline.models.config import SyncConfig
from comick_offline.models.entities import (
    Chapter,
    ChapterRecord,
    ImageEntry,
    ResumeDescriptor,
    Series,
    TranslatorInfo,
    TranslatorPreferences,
    utcnow,
)
from comick_offline.models.outcomes import (
    ConfirmCallback,
    FutureChaptersNotice,
    ProgressCallback,
    SyncReport,
    UpdateResult,
)
from comick_offline.utils.formatting import format_time_until

from .catalog import CatalogFetcher
from .orchestrator import BatchOrchestrator
from .selector import (
    apply_chapter_floor,
    distinct_chapter_count,
    find_conflicts,
    partition_future,
    select_releases,
    summarize_translators,
)

log = logging.getLogger(__name__)

_COMPLETED = "completed"
_FAILED = "failed"
_CANCELLED = "cancelled"


def build_future_notice(
    future: List[ChapterRecord], now: datetime
) -> FutureChaptersNotice:
    earliest = min(r.publish_at for r in future if r.publish_at is not None)
    return FutureChaptersNotice(
        chapters=future,
        earliest_release=earliest,
        time_until_available=format_time_until(earliest, now),
    )


def _cover_url(comic: Dict[str, Any], asset_base_url: str) -> str:
    if url := comic.get("cover_url"):
        return url
    covers = comic.get("md_covers") or []
    if covers and covers[0].get("b2key"):
        return f"{asset_base_url}/{covers[0]['b2key']}"
    return ""


class SyncController:
    """
    Drives whole-series operations against the catalog API and the library.

    One controller may run several operations one after another. Each run
    creates its own AssetTransport, so ``cancel()`` only affects the run in
    progress.
    """

    def __init__(
        self,
        config: SyncConfig,
        api_client,
        store,
        progress_callback: Optional[ProgressCallback] = None,
        confirm_future: Optional[ConfirmCallback] = None,
        transport_factory: Optional[Callable[[SyncConfig], AssetTransport]] = None,
    ):
        self.config = config
        self.api_client = api_client
        self.store = store
        self.progress_callback = progress_callback
        self.confirm_future = confirm_future
        self.catalog = CatalogFetcher(
            api_client,
            page_size=config.page_size,
            language=config.language,
            max_pages=config.max_pages,
        )
        self._transport_factory = transport_factory or AssetTransport.from_config
        self._transport: Optional[AssetTransport] = None
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        """Stops the current run. Safe to call at any time and more than once."""
        if not self._cancelled:
            log.info("[yellow]Cancellation requested.[/yellow]")
        self._cancelled = True
        if self._transport is not None:
            self._transport.cancel()

    def _begin_run(self) -> None:
        self._cancelled = False

    def _progress(self, completed: int, total: int, status: str, phase: str) -> None:
        if self.progress_callback is not None:
            self.progress_callback(completed, total, status, phase)

    async def fetch_translator_info(self, slug: str) -> List[TranslatorInfo]:
        """Lists the translators of a series with the chapters each has released."""
        info = await self.api_client.fetch_series_info(slug)
        records = await self.catalog.fetch_chapters(info["comic"]["hid"])
        return summarize_translators(records)

    async def _gate_future(self, selected: List[ChapterRecord]) -> tuple:
        """
        Splits off unpublished chapters. Raises FutureChaptersPending unless the
        confirmation callback agrees to continue with the published ones only.
        """
        now = utcnow()
        available, future = partition_future(selected, now)
        if not future:
            return available, future

        notice = build_future_notice(future, now)
        confirmed = False
        if self.confirm_future is not None:
            answer = self.confirm_future(notice)
            if inspect.isawaitable(answer):
                answer = await answer
            confirmed = bool(answer)

        if not confirmed:
            raise FutureChaptersPending(notice)
        log.info(
            f"Skipping {len(future)} unpublished chapter(s); "
            f"next release in {notice.time_until_available}."
        )
        return available, future

    async def download_series(
        self,
        slug: str,
        preferences: TranslatorPreferences,
        min_chapter: Optional[float] = None,
    ) -> SyncReport:
        """
        Downloads a series that is not yet in the library.

        Raises:
            SeriesExistsError: If the series is already in the library.
            FetchError: If the series metadata or the chapter listing is unavailable.
            FutureChaptersPending: If unpublished chapters were not confirmed.
            SyncInterruptedError: If some or all chapters did not complete.
        """
        self._begin_run()
        self._progress(0, 3, "Fetching series info...", "setup")
        info = await self.api_client.fetch_series_info(slug)
        comic = info["comic"]
        series_id = str(comic["hid"])
        if await self.store.get_series(series_id) is not None:
            raise SeriesExistsError(
                f"Series '{comic.get('title', slug)}' is already in the library "
                f"as '{series_id}'. Update or resume it instead."
            )

        self._progress(1, 3, "Fetching chapter list...", "setup")
        records = await self.catalog.fetch_chapters(series_id)
        selected = apply_chapter_floor(select_releases(records, preferences), min_chapter)
        available, future = await self._gate_future(selected)

        self._progress(2, 3, "Preparing download...", "setup")
        series = Series(
            id=series_id,
            title=comic.get("title") or slug,
            slug=comic.get("slug") or slug,
            hid=series_id,
            cover_url=_cover_url(comic, self.config.asset_base_url),
            total_chapters=len(available),
            downloaded_chapters=[],
            info=info,
            translators=summarize_translators(records),
            translator_preferences=preferences,
            min_chapter=min_chapter,
        )
        await self.store.save_series(series)
        log.info(
            f"Downloading {len(available)} chapter(s) of [bold]{escape(series.title)}[/bold]"
        )
        self._progress(3, 3, "Ready", "setup")

        completed = await self._download_chapters(series, available, preferences, min_chapter)
        return SyncReport(
            series_id=series.id,
            title=series.title,
            completed_chapters=completed,
            skipped_future=future,
        )

    async def update_series(
        self,
        series_id: str,
        skip_conflict_warning: bool = False,
        min_chapter: Optional[float] = None,
    ) -> UpdateResult:
        """
        Downloads chapters that appeared in the catalog since the last run.

        If a new chapter would come from a translator outside the series
        preferences, nothing is downloaded and the conflicting records are
        returned, unless ``skip_conflict_warning`` is set.
        """
        self._begin_run()
        series = await self.store.require_series(series_id)
        preferences = series.translator_preferences

        self._progress(0, 2, "Checking for new chapters...", "setup")
        records = await self.catalog.fetch_chapters(series.hid)
        local_chapters = await self.store.get_chapters_by_series_id(series_id)
        local = {c.number for c in local_chapters if c.number is not None}

        floor = min_chapter if min_chapter is not None else series.min_chapter
        candidates = [r for r in records if r.number is not None and r.number not in local]
        candidates = apply_chapter_floor(candidates, floor)
        selected = select_releases(candidates, preferences)
        self._progress(1, 2, f"Found {len(selected)} new chapter(s)", "setup")

        if not selected:
            log.info(f"No new chapters for [bold]{escape(series.title)}[/bold].")
            return UpdateResult(new_chapters=0, conflicts=[], series_id=series_id)

        available, _ = await self._gate_future(selected)
        conflicts = find_conflicts(available, preferences)
        if conflicts and not skip_conflict_warning:
            log.warning(
                f"[yellow]{len(conflicts)} new chapter(s) of {escape(series.title)} "
                f"come from other translators.[/yellow]"
            )
            return UpdateResult(new_chapters=0, conflicts=conflicts, series_id=series_id)

        if not available:
            return UpdateResult(new_chapters=0, conflicts=[], series_id=series_id)

        series.translators = summarize_translators(records)
        series.total_chapters = max(series.total_chapters, distinct_chapter_count(records))
        series.last_updated = utcnow()
        if min_chapter is not None:
            series.min_chapter = min_chapter
        self._progress(2, 2, "Downloading new chapters...", "setup")

        completed = await self._download_chapters(series, available, preferences, floor)
        return UpdateResult(new_chapters=len(completed), conflicts=[], series_id=series_id)

    async def resume_download(
        self, descriptor: ResumeDescriptor, min_chapter: Optional[float] = None
    ) -> SyncReport:
        """Continues an interrupted run from its remaining chapter records."""
        self._begin_run()
        series = await self.store.require_series(descriptor.series_id)
        preferences = descriptor.preferences or series.translator_preferences
        floor = min_chapter if min_chapter is not None else descriptor.min_chapter

        self._progress(0, 1, "Preparing resume...", "setup")
        remaining = apply_chapter_floor(descriptor.remaining, floor)
        remaining.sort(key=lambda r: r.number or 0.0)
        available, future = await self._gate_future(remaining)
        self._progress(1, 1, f"Resuming {len(available)} chapter(s)", "setup")

        completed = await self._download_chapters(
            series,
            available,
            preferences,
            floor,
            previously_completed=descriptor.completed_chapters,
        )
        return SyncReport(
            series_id=series.id,
            title=series.title,
            completed_chapters=completed,
            skipped_future=future,
        )

    async def _fetch_manifest(self, record: ChapterRecord) -> List[ImageEntry]:
        try:
            raw = await self.api_client.fetch_chapter_images(record.hid)
            images = [ImageEntry.model_validate(item) for item in raw]
        except FetchError as e:
            raise ChapterError(f"Image list unavailable: {e}", record) from e
        except ValidationError as e:
            raise ChapterError(f"Malformed image list: {e.error_count()} error(s)", record) from e
        if not images:
            log.warning(f"[yellow]Chapter {record.chap} has no pages.[/yellow]")
        return images

    async def _download_chapter(
        self,
        series_id: str,
        record: ChapterRecord,
        transport: AssetTransport,
        orchestrator: BatchOrchestrator,
    ) -> str:
        label = record.chap or "?"
        await transport.ensure_healthy()
        try:
            images = await self._fetch_manifest(record)
        except ChapterError as e:
            if self._cancelled:
                return _CANCELLED
            log.error(f"[red]Chapter {label} failed: {e}[/red]")
            return _FAILED
        if self._cancelled:
            return _CANCELLED

        result = await orchestrator.download_chapter_images(images, record.hid, label)
        if result.cancelled:
            return _CANCELLED

        await self.store.save_chapter(
            Chapter(
                series_id=series_id,
                chapter_number=record.chap,
                chapter_hid=record.hid,
                translator=record.translator,
                images=result.image_ids,
                updated_at=record.created_at,
            )
        )
        return _COMPLETED if result.complete else _FAILED

    async def _download_chapters(
        self,
        series: Series,
        chapters: Sequence[ChapterRecord],
        preferences: TranslatorPreferences,
        min_chapter: Optional[float],
        previously_completed: Sequence[float] = (),
    ) -> List[float]:
        """
        Downloads chapters one at a time in the given order, persists the
        series and classifies the run.

        Returns the completed chapter numbers on success and raises
        SyncInterruptedError otherwise.
        """
        transport = self._transport_factory(self.config)
        self._transport = transport
        if self._cancelled:
            transport.cancel()
        orchestrator = BatchOrchestrator.from_config(
            transport, self.store, self.config, self.progress_callback
        )

        completed: List[float] = []
        failed: List[ChapterRecord] = []
        cancelled = False
        total = len(chapters)
        try:
            for position, record in enumerate(chapters):
                if self._cancelled:
                    failed.extend(chapters[position:])
                    cancelled = True
                    break

                self._progress(
                    position + 1,
                    total,
                    f"Downloading chapter {record.chap} by {record.translator}",
                    "chapters",
                )
                outcome = await self._download_chapter(
                    series.id, record, transport, orchestrator
                )
                if outcome == _CANCELLED:
                    failed.extend(chapters[position:])
                    cancelled = True
                    break
                if outcome == _COMPLETED:
                    completed.append(record.number)
                else:
                    failed.append(record)
        finally:
            self._transport = None
            await transport.close()

        if completed or not failed:
            merged = sorted(set(series.downloaded_chapters) | set(completed))
            series.downloaded_chapters = merged
            series.total_chapters = max(series.total_chapters, len(merged))
            await self.store.save_series(series)

        if cancelled:
            kind = SyncInterruptedError.CANCELLED
        elif failed and completed:
            kind = SyncInterruptedError.PARTIAL
        elif failed:
            kind = SyncInterruptedError.NETWORK
        else:
            await self.store.clear_resume_state(series.id)
            self._progress(total, total, "Download complete!", "chapters")
            return sorted(completed)

        descriptor = ResumeDescriptor(
            series_id=series.id,
            slug=series.slug,
            completed_chapters=sorted(set(previously_completed) | set(completed)),
            remaining=list(failed),
            preferences=preferences,
            min_chapter=min_chapter,
            kind=kind,
        )
        await self.store.save_resume_state(descriptor)
        log.warning(
            f"[yellow]{escape(series.title)}: {len(completed)} chapter(s) completed, "
            f"{len(failed)} remaining ({kind}).[/yellow]"
        )
        raise SyncInterruptedError(kind, descriptor)
