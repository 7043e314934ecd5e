"""
Defines custom exceptions for the application to allow for more specific error handling.
"""

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from comick_offline.models.entities import ChapterRecord, ResumeDescriptor
    from comick_offline.models.outcomes import FutureChaptersNotice


class ComickOfflineError(Exception):
    """Base exception for all application-specific errors."""


class ConfigurationError(ComickOfflineError):
    """Raised for issues related to configuration loading or validation."""


class StorageError(ComickOfflineError):
    """Raised when the local library database or blob directory cannot be written."""


class FetchError(ComickOfflineError):
    """
    Raised when the remote catalog, series metadata or an image manifest is
    unreachable or answers with a non-success status.
    """

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class AssetError(ComickOfflineError):
    """A single page image could not be fetched on one attempt."""


class ChapterError(ComickOfflineError):
    """Raised when a chapter's image manifest cannot be fetched."""

    def __init__(self, message: str, chapter: "ChapterRecord"):
        super().__init__(message)
        self.chapter = chapter


class SeriesNotFoundError(ComickOfflineError):
    """Raised when a series is expected in the local library but is missing."""


class SeriesExistsError(ComickOfflineError):
    """Raised when a fresh download is requested for a series already in the library."""


class ConflictError(ComickOfflineError):
    """
    Raised when new chapters would be downloaded from translators that are neither
    the primary nor a backup translator of the series.
    """

    def __init__(self, series_id: str, conflicts: list["ChapterRecord"]):
        names = sorted({c.translator for c in conflicts})
        super().__init__(
            f"{len(conflicts)} new chapter(s) of series '{series_id}' are only "
            f"available from other translators: {', '.join(names)}"
        )
        self.series_id = series_id
        self.conflicts = conflicts


class FutureChaptersPending(ComickOfflineError):
    """
    Raised when some selected chapters are not yet published and the caller did
    not confirm downloading only the available ones.
    """

    def __init__(self, notice: "FutureChaptersNotice"):
        super().__init__(notice.message)
        self.notice = notice


class SyncInterruptedError(ComickOfflineError):
    """
    A run ended before every selected chapter was downloaded. The run can be
    continued with the attached resume descriptor.

    ``kind`` is one of ``"network"`` (nothing completed), ``"partial"`` (some
    chapters completed) or ``"cancelled"`` (stopped by the caller).
    """

    NETWORK = "network"
    PARTIAL = "partial"
    CANCELLED = "cancelled"

    def __init__(self, kind: str, descriptor: "ResumeDescriptor"):
        self.kind = kind
        self.descriptor = descriptor
        completed = len(descriptor.completed_chapters)
        failed = len(descriptor.remaining)
        if kind == self.CANCELLED:
            message = (
                f"Download cancelled after {completed} chapter(s); "
                f"{failed} chapter(s) remaining."
            )
        elif kind == self.PARTIAL:
            message = (
                f"Downloaded {completed} chapter(s), but {failed} chapter(s) failed."
            )
        else:
            message = f"All {failed} chapter(s) failed to download."
        super().__init__(message)

    @property
    def series_id(self) -> str:
        return self.descriptor.series_id

    @property
    def completed_chapters(self) -> list[float]:
        return self.descriptor.completed_chapters

    @property
    def failed_chapters(self) -> list["ChapterRecord"]:
        return self.descriptor.remaining
