import pytest

from comick_offline.cli.app import _update_each
from comick_offline.core.sync_controller import build_future_notice
from comick_offline.exceptions import FutureChaptersPending, SyncInterruptedError
from comick_offline.models.entities import (
    ChapterRecord,
    ResumeDescriptor,
    Series,
    TranslatorPreferences,
    utcnow,
)
from comick_offline.models.outcomes import UpdateResult

from conftest import in_one_hour, make_chapter


def make_series(series_id):
    return Series(
        id=series_id,
        title=f"Series {series_id}",
        slug=series_id,
        hid=series_id,
        translator_preferences=TranslatorPreferences(primary="Alpha"),
    )


class StubController:
    """Answers update_series from a per-series script of results or errors."""

    def __init__(self, script):
        self.script = script
        self.cancelled = False
        self.calls = []

    async def update_series(self, series_id, **options):
        self.calls.append((series_id, options))
        outcome = self.script[series_id]
        if isinstance(outcome, Exception):
            if getattr(outcome, "kind", None) == SyncInterruptedError.CANCELLED:
                self.cancelled = True
            raise outcome
        return outcome


def interrupted(series_id, kind=SyncInterruptedError.PARTIAL):
    return SyncInterruptedError(
        kind, ResumeDescriptor(series_id=series_id, completed_chapters=[1.0], kind=kind)
    )


def pending_future():
    record = ChapterRecord.model_validate(make_chapter(9, publish_at=in_one_hour()))
    return FutureChaptersPending(build_future_notice([record], utcnow()))


@pytest.mark.asyncio
async def test_library_update_continues_past_failing_series():
    targets = [make_series(s) for s in ("a", "b", "c", "d")]
    controller = StubController(
        {
            "a": interrupted("a"),
            "b": UpdateResult(new_chapters=2, conflicts=[], series_id="b"),
            "c": pending_future(),
            "d": UpdateResult(new_chapters=0, conflicts=[], series_id="d"),
        }
    )

    results, skipped = await _update_each(
        controller, targets, stop_on_error=False, min_chapter=None
    )

    assert [s.id for s, _ in results] == ["b", "d"]
    assert [s.id for s, _ in skipped] == ["a", "c"]
    assert isinstance(skipped[0][1], SyncInterruptedError)
    assert isinstance(skipped[1][1], FutureChaptersPending)
    assert [c[0] for c in controller.calls] == ["a", "b", "c", "d"]
    assert controller.calls[0][1] == {"min_chapter": None}


@pytest.mark.asyncio
async def test_single_series_update_raises():
    controller = StubController({"a": interrupted("a")})

    with pytest.raises(SyncInterruptedError):
        await _update_each(controller, [make_series("a")], stop_on_error=True)


@pytest.mark.asyncio
async def test_cancellation_stops_library_update():
    targets = [make_series(s) for s in ("a", "b")]
    controller = StubController(
        {
            "a": interrupted("a", SyncInterruptedError.CANCELLED),
            "b": UpdateResult(new_chapters=1, conflicts=[], series_id="b"),
        }
    )

    with pytest.raises(SyncInterruptedError) as excinfo:
        await _update_each(controller, targets, stop_on_error=False)

    assert excinfo.value.kind == SyncInterruptedError.CANCELLED
    assert [c[0] for c in controller.calls] == ["a"]
