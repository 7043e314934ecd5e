"""
Downloads the page images of one chapter in batches of bounded concurrency.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

from comick_offline.exceptions import StorageError
from comick_offline.media.transport import AssetResult, AssetTransport
from comick_offline.models.config import SyncConfig
from comick_offline.models.entities import ImageEntry
from comick_offline.models.outcomes import ProgressCallback

log = logging.getLogger(__name__)


def image_id_for(chapter_hid: str, b2key: str) -> str:
    return f"{chapter_hid}-{b2key}"


@dataclass
class ChapterDownloadResult:
    """Image ids that were stored, in manifest order, and the assets that failed."""

    image_ids: List[str] = field(default_factory=list)
    failed: List[AssetResult] = field(default_factory=list)
    total: int = 0
    cancelled: bool = False

    @property
    def complete(self) -> bool:
        return not self.failed and not self.cancelled and len(self.image_ids) == self.total


class BatchOrchestrator:
    """
    Splits a chapter's manifest into batches and each batch into windows of
    concurrent transport calls. Asset failures are collected, never raised.
    """

    def __init__(
        self,
        transport: AssetTransport,
        store,
        batch_size: int = 50,
        max_workers: int = 8,
        window_pause: float = 0.05,
        batch_pause: float = 0.1,
        failure_pause: float = 0.5,
        progress_callback: Optional[ProgressCallback] = None,
    ):
        self.transport = transport
        self.store = store
        self.batch_size = batch_size
        self.max_workers = max_workers
        self.window_pause = window_pause
        self.batch_pause = batch_pause
        self.failure_pause = failure_pause
        self.progress_callback = progress_callback

    @classmethod
    def from_config(
        cls,
        transport: AssetTransport,
        store,
        config: SyncConfig,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> "BatchOrchestrator":
        return cls(
            transport,
            store,
            batch_size=config.batch_size,
            max_workers=config.max_workers,
            window_pause=config.window_pause,
            batch_pause=config.batch_pause,
            failure_pause=config.failure_pause,
            progress_callback=progress_callback,
        )

    async def _download_one(
        self, index: int, entry: ImageEntry, chapter_hid: str
    ) -> AssetResult:
        image_id = image_id_for(chapter_hid, entry.b2key)
        result = await self.transport.fetch(entry.b2key, image_id, index=index)
        if not result.success:
            return result

        try:
            await self.store.save_image(image_id, result.payload)
        except StorageError as e:
            log.error(f"[red]Could not store page {index + 1} of chapter {chapter_hid}: {e}[/red]")
            return AssetResult(
                asset_id=image_id,
                index=index,
                success=False,
                error=str(e),
                attempts=result.attempts,
            )
        result.payload = None
        return result

    async def download_chapter_images(
        self,
        images: Sequence[ImageEntry],
        chapter_hid: str,
        chapter_label: str,
    ) -> ChapterDownloadResult:
        """
        Downloads and stores every page of a chapter.

        The returned ids are sorted by manifest position regardless of the
        order in which downloads finished.
        """
        total = len(images)
        indexed: List[Tuple[int, ImageEntry]] = list(enumerate(images))
        stored: List[Tuple[int, str]] = []
        failed: List[AssetResult] = []
        done = 0

        def report() -> None:
            if self.progress_callback is None:
                return
            status = f"Chapter {chapter_label} - {done}/{total} pages"
            if failed:
                status += f" ({len(failed)} failed)"
            self.progress_callback(done, total, status, "images")

        async def run(index: int, entry: ImageEntry) -> None:
            nonlocal done
            result = await self._download_one(index, entry, chapter_hid)
            if result.cancelled:
                return
            if result.success:
                stored.append((result.index, result.asset_id))
            else:
                failed.append(result)
            done += 1
            report()

        report()
        for batch_start in range(0, total, self.batch_size):
            if self.transport.cancelled:
                break
            batch = indexed[batch_start : batch_start + self.batch_size]
            failures_before = len(failed)

            for window_start in range(0, len(batch), self.max_workers):
                if self.transport.cancelled:
                    break
                window = batch[window_start : window_start + self.max_workers]
                await asyncio.gather(*(run(i, entry) for i, entry in window))
                if len(window) == self.max_workers:
                    await asyncio.sleep(self.window_pause)

            if self.transport.cancelled or batch_start + self.batch_size >= total:
                continue
            if len(failed) > failures_before:
                await self.transport.reset_connections(
                    reason=f"{len(failed) - failures_before} failed page(s) in batch"
                )
                await asyncio.sleep(self.failure_pause)
            else:
                await asyncio.sleep(self.batch_pause)

        stored.sort()
        failed.sort(key=lambda r: r.index)
        result = ChapterDownloadResult(
            image_ids=[image_id for _, image_id in stored],
            failed=failed,
            total=total,
            cancelled=self.transport.cancelled,
        )
        if failed:
            log.warning(
                f"[yellow]Chapter {chapter_label}: {len(failed)} of {total} "
                f"page(s) failed.[/yellow]"
            )
        return result
