"""
Manages the SQLite library of downloaded series, chapters and page images.
"""

import asyncio
import hashlib
import logging
import os
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator, Optional

import aiofiles

from comick_offline.exceptions import SeriesNotFoundError, StorageError
from comick_offline.models.entities import (
    Chapter,
    LastReadChapter,
    ResumeDescriptor,
    Series,
    TranslatorPreferences,
    utcnow,
)

log = logging.getLogger(__name__)


class LibraryStore:
    """
    Durable store for the offline library.

    Series, chapters and resume descriptors are stored as JSON documents in
    SQLite. Page images are written to a content-addressed blob directory and
    indexed in the ``images`` table. Synchronous SQLite work runs in worker
    threads, bounded by a semaphore.
    """

    def __init__(self, library_dir: Path, pool_size: int = 5):
        self.library_dir = Path(library_dir)
        self.library_dir.mkdir(parents=True, exist_ok=True)
        self.db_path = self.library_dir / "library.sqlite"
        self.blob_dir = self.library_dir / "images"
        self.blob_dir.mkdir(exist_ok=True)
        self._connection_semaphore = asyncio.Semaphore(pool_size)
        self._initialize_db()

    def _get_connection(self) -> sqlite3.Connection:
        """Gets a new database connection with optimized PRAGMA settings."""
        conn = sqlite3.connect(self.db_path, timeout=30, check_same_thread=False)
        conn.execute("PRAGMA journal_mode=WAL;")
        conn.execute("PRAGMA synchronous=NORMAL;")
        conn.execute("PRAGMA temp_store=MEMORY;")
        return conn

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        """Yields a connection inside a transaction and closes it afterwards."""
        conn = self._get_connection()
        try:
            with conn:
                yield conn
        finally:
            conn.close()

    def _initialize_db(self) -> None:
        """Creates the tables and indexes if they don't exist."""
        try:
            with self._connect() as conn:
                conn.executescript(
                    """
                    CREATE TABLE IF NOT EXISTS series (
                        id TEXT PRIMARY KEY NOT NULL,
                        title TEXT,
                        slug TEXT,
                        data TEXT NOT NULL,
                        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                    );
                    CREATE TABLE IF NOT EXISTS chapters (
                        chapter_hid TEXT PRIMARY KEY NOT NULL,
                        series_id TEXT NOT NULL,
                        chapter_number TEXT,
                        data TEXT NOT NULL
                    );
                    CREATE INDEX IF NOT EXISTS idx_chapters_series
                        ON chapters(series_id);
                    CREATE TABLE IF NOT EXISTS images (
                        id TEXT PRIMARY KEY NOT NULL,
                        path TEXT NOT NULL,
                        size INTEGER,
                        downloaded_at TIMESTAMP
                    );
                    CREATE TABLE IF NOT EXISTS resume_state (
                        series_id TEXT PRIMARY KEY NOT NULL,
                        data TEXT NOT NULL,
                        recorded_at TIMESTAMP
                    );
                    """
                )
        except sqlite3.Error as e:
            raise StorageError(
                f"Failed to initialize library database at '{self.db_path}': {e}"
            ) from e

    async def _run_in_executor(self, func, *args):
        """Runs a synchronous database function within the connection pool semaphore."""
        async with self._connection_semaphore:
            try:
                return await asyncio.to_thread(func, *args)
            except sqlite3.Error as e:
                log.error(f"Library database error in {func.__name__}: {e}")
                raise StorageError(f"Library database error: {e}") from e

    # Series

    def _save_series_sync(self, series: Series) -> None:
        with self._connect() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO series (id, title, slug, data, updated_at) "
                "VALUES (?, ?, ?, ?, ?)",
                (
                    series.id,
                    series.title,
                    series.slug,
                    series.model_dump_json(),
                    series.last_updated.isoformat(),
                ),
            )

    async def save_series(self, series: Series) -> None:
        await self._run_in_executor(self._save_series_sync, series)

    def _load_series_sync(self, series_id: Optional[str]) -> list[Series]:
        with self._connect() as conn:
            if series_id is None:
                rows = conn.execute("SELECT data FROM series ORDER BY title").fetchall()
            else:
                rows = conn.execute(
                    "SELECT data FROM series WHERE id = ?", (series_id,)
                ).fetchall()
        return [Series.model_validate_json(row[0]) for row in rows]

    async def _reconcile(self, series: Series) -> Series:
        """
        Recomputes the downloaded chapter numbers from the persisted chapter rows
        and writes the series back if the stored aggregate had drifted.
        """
        chapters = await self.get_chapters_by_series_id(series.id)
        actual = sorted({c.number for c in chapters if c.number is not None})
        total = max(series.total_chapters, len(actual))

        if actual == series.downloaded_chapters and total == series.total_chapters:
            return series

        log.debug(
            f"Reconciling series '{series.id}': stored "
            f"{len(series.downloaded_chapters)} chapter(s), found {len(actual)}."
        )
        synced = series.model_copy(
            update={"downloaded_chapters": actual, "total_chapters": total}
        )
        await self.save_series(synced)
        return synced

    async def get_series(self, series_id: str) -> Optional[Series]:
        """Loads a series with its downloaded chapters reconciled against the chapter rows."""
        found = await self._run_in_executor(self._load_series_sync, series_id)
        if not found:
            return None
        return await self._reconcile(found[0])

    async def get_all_series(self) -> list[Series]:
        """Loads every series, each reconciled against its chapter rows."""
        found = await self._run_in_executor(self._load_series_sync, None)
        return [await self._reconcile(series) for series in found]

    async def require_series(self, series_id: str) -> Series:
        series = await self.get_series(series_id)
        if series is None:
            raise SeriesNotFoundError(f"Series '{series_id}' is not in the library.")
        return series

    def _delete_series_sync(self, series_id: str) -> list[str]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT data FROM chapters WHERE series_id = ?", (series_id,)
            ).fetchall()
            image_ids = [
                image_id
                for row in rows
                for image_id in Chapter.model_validate_json(row[0]).images
            ]
            paths = []
            for image_id in dict.fromkeys(image_ids):
                found = conn.execute(
                    "SELECT path FROM images WHERE id = ?", (image_id,)
                ).fetchone()
                if found:
                    paths.append(found[0])
                conn.execute("DELETE FROM images WHERE id = ?", (image_id,))
            conn.execute("DELETE FROM chapters WHERE series_id = ?", (series_id,))
            conn.execute("DELETE FROM resume_state WHERE series_id = ?", (series_id,))
            conn.execute("DELETE FROM series WHERE id = ?", (series_id,))
        return paths

    async def delete_series(self, series_id: str) -> int:
        """
        Deletes a series together with its chapters, image rows, image files
        and resume state. Returns the number of image files removed.
        """
        paths = await self._run_in_executor(self._delete_series_sync, series_id)
        removed = 0
        for relative in paths:
            try:
                await asyncio.to_thread(os.remove, self.blob_dir / relative)
                removed += 1
            except FileNotFoundError:
                continue
            except OSError as e:
                log.warning(f"[yellow]Could not remove image file {relative}: {e}[/]")
        log.info(f"Deleted series '{series_id}' ({removed} image files).")
        return removed

    async def update_last_read_chapter(
        self, series_id: str, chapter_number: str, chapter_hid: str
    ) -> Series:
        series = await self.require_series(series_id)
        series.last_read_chapter = LastReadChapter(
            chapter_number=chapter_number, chapter_hid=chapter_hid
        )
        await self.save_series(series)
        return series

    async def update_translator_preferences(
        self, series_id: str, preferences: TranslatorPreferences
    ) -> Series:
        series = await self.require_series(series_id)
        series.translator_preferences = preferences
        await self.save_series(series)
        return series

    # Chapters

    def _save_chapter_sync(self, chapter: Chapter) -> None:
        with self._connect() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO chapters "
                "(chapter_hid, series_id, chapter_number, data) VALUES (?, ?, ?, ?)",
                (
                    chapter.chapter_hid,
                    chapter.series_id,
                    chapter.chapter_number,
                    chapter.model_dump_json(),
                ),
            )

    async def save_chapter(self, chapter: Chapter) -> None:
        await self._run_in_executor(self._save_chapter_sync, chapter)

    def _get_chapter_sync(self, chapter_hid: str) -> Optional[Chapter]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT data FROM chapters WHERE chapter_hid = ?", (chapter_hid,)
            ).fetchone()
        return Chapter.model_validate_json(row[0]) if row else None

    async def get_chapter(self, chapter_hid: str) -> Optional[Chapter]:
        return await self._run_in_executor(self._get_chapter_sync, chapter_hid)

    def _get_chapters_sync(self, series_id: str) -> list[Chapter]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT data FROM chapters WHERE series_id = ?", (series_id,)
            ).fetchall()
        chapters = [Chapter.model_validate_json(row[0]) for row in rows]
        return sorted(chapters, key=lambda c: (c.number is None, c.number or 0.0))

    async def get_chapters_by_series_id(self, series_id: str) -> list[Chapter]:
        """Returns the chapters of a series ordered by chapter number."""
        return await self._run_in_executor(self._get_chapters_sync, series_id)

    def _delete_chapter_sync(self, chapter_hid: str) -> bool:
        with self._connect() as conn:
            cursor = conn.execute(
                "DELETE FROM chapters WHERE chapter_hid = ?", (chapter_hid,)
            )
            return cursor.rowcount > 0

    async def delete_chapter(self, chapter_hid: str) -> bool:
        """Removes a chapter row. Its image files are left for the series cascade."""
        return await self._run_in_executor(self._delete_chapter_sync, chapter_hid)

    # Images

    def _blob_path(self, image_id: str) -> str:
        digest = hashlib.md5(image_id.encode("utf-8")).hexdigest()  # noqa: S324
        return f"{digest[:2]}/{digest}"

    def _index_image_sync(self, image_id: str, relative: str, size: int) -> None:
        with self._connect() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO images (id, path, size, downloaded_at) "
                "VALUES (?, ?, ?, ?)",
                (image_id, relative, size, datetime.now(timezone.utc).isoformat()),
            )

    async def save_image(self, image_id: str, payload: bytes) -> None:
        """Writes the image file, then indexes it. The file is replaced atomically."""
        relative = self._blob_path(image_id)
        path = self.blob_dir / relative
        temp_path = path.with_suffix(".tmp")
        try:
            await asyncio.to_thread(path.parent.mkdir, parents=True, exist_ok=True)
            async with aiofiles.open(temp_path, "wb") as f:
                await f.write(payload)
            await asyncio.to_thread(os.replace, temp_path, path)
        except OSError as e:
            raise StorageError(f"Failed to write image '{image_id}': {e}") from e
        await self._run_in_executor(
            self._index_image_sync, image_id, relative, len(payload)
        )

    def _image_path_sync(self, image_id: str) -> Optional[str]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT path FROM images WHERE id = ?", (image_id,)
            ).fetchone()
        return row[0] if row else None

    async def get_image(self, image_id: str) -> Optional[bytes]:
        relative = await self._run_in_executor(self._image_path_sync, image_id)
        if relative is None:
            return None
        try:
            async with aiofiles.open(self.blob_dir / relative, "rb") as f:
                return await f.read()
        except FileNotFoundError:
            log.warning(f"[yellow]Image file for '{image_id}' is missing.[/yellow]")
            return None

    # Resume state

    def _save_resume_sync(self, descriptor: ResumeDescriptor) -> None:
        with self._connect() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO resume_state (series_id, data, recorded_at) "
                "VALUES (?, ?, ?)",
                (
                    descriptor.series_id,
                    descriptor.model_dump_json(),
                    descriptor.recorded_at.isoformat(),
                ),
            )

    async def save_resume_state(self, descriptor: ResumeDescriptor) -> None:
        await self._run_in_executor(self._save_resume_sync, descriptor)

    def _load_resume_sync(self, series_id: Optional[str]) -> list[ResumeDescriptor]:
        with self._connect() as conn:
            if series_id is None:
                rows = conn.execute(
                    "SELECT data FROM resume_state ORDER BY recorded_at"
                ).fetchall()
            else:
                rows = conn.execute(
                    "SELECT data FROM resume_state WHERE series_id = ?", (series_id,)
                ).fetchall()
        return [ResumeDescriptor.model_validate_json(row[0]) for row in rows]

    async def get_resume_state(self, series_id: str) -> Optional[ResumeDescriptor]:
        found = await self._run_in_executor(self._load_resume_sync, series_id)
        return found[0] if found else None

    async def list_resume_states(self) -> list[ResumeDescriptor]:
        return await self._run_in_executor(self._load_resume_sync, None)

    def _clear_resume_sync(self, series_id: str) -> None:
        with self._connect() as conn:
            conn.execute("DELETE FROM resume_state WHERE series_id = ?", (series_id,))

    async def clear_resume_state(self, series_id: str) -> None:
        await self._run_in_executor(self._clear_resume_sync, series_id)

    # Maintenance

    def _get_stats_sync(self) -> dict[str, Any]:
        with self._connect() as conn:
            series_count = conn.execute("SELECT COUNT(*) FROM series").fetchone()[0]
            chapter_count = conn.execute("SELECT COUNT(*) FROM chapters").fetchone()[0]
            image_count, total_size = conn.execute(
                "SELECT COUNT(*), COALESCE(SUM(size), 0) FROM images"
            ).fetchone()
            pending = conn.execute("SELECT COUNT(*) FROM resume_state").fetchone()[0]
            top_series = conn.execute(
                """
                SELECT s.title, COUNT(c.chapter_hid) AS count
                FROM series s LEFT JOIN chapters c ON c.series_id = s.id
                GROUP BY s.id
                ORDER BY count DESC
                LIMIT 10
                """
            ).fetchall()
        return {
            "series": series_count,
            "chapters": chapter_count,
            "images": image_count,
            "total_size": total_size,
            "pending_resumes": pending,
            "top_series": top_series,
            "generated_at": utcnow().isoformat(),
        }

    async def get_stats(self) -> dict[str, Any]:
        """Counts series, chapters and images and sums the stored image size."""
        return await self._run_in_executor(self._get_stats_sync)

    def _vacuum_sync(self) -> None:
        conn = self._get_connection()
        try:
            conn.execute("VACUUM;")
            conn.execute("ANALYZE;")
        finally:
            conn.close()
        log.info("Library database optimized successfully.")

    async def vacuum(self) -> None:
        """Optimizes the database file by rebuilding it."""
        await self._run_in_executor(self._vacuum_sync)
