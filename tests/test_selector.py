from datetime import timedelta

import pytest

from comick_offline.core.selector import (
    apply_chapter_floor,
    find_conflicts,
    partition_future,
    select_releases,
    summarize_translators,
)
from comick_offline.models.entities import (
    ChapterRecord,
    TranslatorPreferences,
    utcnow,
)

from conftest import make_chapter


def records(*raw):
    return [ChapterRecord.model_validate(r) for r in raw]


def test_primary_then_backup():
    chapters = records(
        make_chapter(5, "B1"),
        make_chapter(5, "P"),
        make_chapter(6, "B2"),
        make_chapter(6, "B1"),
    )
    prefs = TranslatorPreferences(primary="P", backups=["B1", "B2"])

    selected = select_releases(chapters, prefs)

    assert [(r.chap, r.translator) for r in selected] == [("5", "P"), ("6", "B1")]


def test_backups_are_tried_in_preference_order():
    chapters = records(make_chapter(7, "B2"), make_chapter(7, "B1"))
    prefs = TranslatorPreferences(primary="P", backups=["B1", "B2"])

    assert select_releases(chapters, prefs)[0].translator == "B1"


def test_override_disabled_falls_back_to_first_listed():
    chapters = records(make_chapter(6, "B2"), make_chapter(6, "B1"))
    prefs = TranslatorPreferences(
        primary="P", backups=["B1"], allow_backup_override=False
    )

    assert select_releases(chapters, prefs)[0].translator == "B2"


def test_no_match_takes_first_in_input_order():
    chapters = records(make_chapter(1, "X"), make_chapter(1, "Y"))
    prefs = TranslatorPreferences(primary="P", backups=["B1"])

    assert select_releases(chapters, prefs)[0].translator == "X"


def test_one_release_per_number_sorted_numerically():
    chapters = records(
        make_chapter(10, "P"),
        make_chapter("9.5", "P"),
        make_chapter(2, "P"),
        make_chapter(2, "Q"),
        make_chapter("extra", "P"),
        make_chapter("nan", "P"),
        {"hid": "no-number", "lang": "en"},
    )
    prefs = TranslatorPreferences(primary="P")

    selected = select_releases(chapters, prefs)

    numbers = [r.number for r in selected]
    assert numbers == [2.0, 9.5, 10.0]
    assert len(set(numbers)) == len(numbers)


@pytest.mark.parametrize(
    "raw, expected",
    [
        (
            {"hid": "a", "chap": "1", "md_chapters_groups": [{"md_groups": {"title": "Group"}}],
             "group_name": ["Raw"]},
            "Group",
        ),
        ({"hid": "b", "chap": "1", "md_chapters_groups": [], "group_name": ["Raw"]}, "Raw"),
        (
            {"hid": "c", "chap": "1", "identities": {"traits": {"username": "uploader"}}},
            "uploader",
        ),
        ({"hid": "d", "chap": "1"}, "Unknown"),
    ],
)
def test_translator_attribution(raw, expected):
    assert ChapterRecord.model_validate(raw).translator == expected


def test_summarize_translators():
    chapters = records(
        make_chapter(1, "Old"),
        make_chapter(2, "Old"),
        make_chapter(3, "New"),
        make_chapter(3, "Old"),
    )

    summary = summarize_translators(chapters)

    assert [t.name for t in summary] == ["Old", "New"]
    assert summary[0].chapters == [1.0, 2.0, 3.0]
    assert summary[1].latest_chapter == 3.0


def test_find_conflicts():
    chapters = records(make_chapter(1, "P"), make_chapter(2, "B"), make_chapter(3, "X"))
    prefs = TranslatorPreferences(primary="P", backups=["B"])

    assert [r.chap for r in find_conflicts(chapters, prefs)] == ["3"]


def test_apply_chapter_floor():
    chapters = records(make_chapter(1), make_chapter("4.5"), make_chapter(5))

    assert [r.chap for r in apply_chapter_floor(chapters, 4.5)] == ["4.5", "5"]
    assert len(apply_chapter_floor(chapters, None)) == 3


def test_partition_future_is_strict():
    now = utcnow()
    chapters = records(
        make_chapter(1, publish_at=now - timedelta(days=1)),
        make_chapter(2, publish_at=now),
        make_chapter(3, publish_at=now + timedelta(seconds=1)),
        make_chapter(4),
    )

    available, future = partition_future(chapters, now)

    assert [r.chap for r in available] == ["1", "2", "4"]
    assert [r.chap for r in future] == ["3"]
