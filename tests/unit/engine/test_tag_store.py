"""Tag store merge semantics, ordering, filtering and freshness."""

from __future__ import annotations

import threading
from datetime import timedelta

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st
from nightly_builders import BASE_TIME, at, make_record

from agent_nightlies.domain.models import MergeResult
from agent_nightlies.engine.tag_store import RecordFilter, TagStore, collapse_variants

pytestmark = pytest.mark.unit


def test_merge_twice_is_idempotent() -> None:
    records = [make_record(f"{i:08x}", at(-i)) for i in range(5)]
    store = TagStore()

    first = store.merge(records)
    ordered = store.all_records()
    second = store.merge(records)

    assert first == MergeResult(added=5, updated=0, unchanged=0)
    assert second == MergeResult(added=0, updated=0, unchanged=5)
    assert store.all_records() == ordered


def test_merge_updates_on_push_time_or_digest_change() -> None:
    store = TagStore([make_record("c9456471", at(0))])

    moved = store.merge([make_record("c9456471", at(0, hours=1))])
    with_digest = store.merge([make_record("c9456471", at(0, hours=1), digest="sha256:aa")])

    assert moved.updated == 1
    assert with_digest.updated == 1
    assert store.all_records()[0].digest == "sha256:aa"


def test_merge_keeps_known_digest_when_incoming_has_none() -> None:
    store = TagStore([make_record("c9456471", at(0), digest="sha256:aa")])

    result = store.merge([make_record("c9456471", at(0))])

    assert result.unchanged == 1
    assert store.all_records()[0].digest == "sha256:aa"


def test_unchanged_merge_keeps_published_snapshot() -> None:
    store = TagStore([make_record("c9456471", at(0))])
    before = store.snapshot()

    store.merge([make_record("c9456471", at(0))])

    assert store.snapshot() is before


def test_ties_order_by_tag_name() -> None:
    store = TagStore(
        [
            make_record("e4acb3f1", at(0)),
            make_record("c9456471", at(0)),
            make_record(None, at(0)),
        ]
    )

    assert [record.tag_name for record in store.all_records()] == [
        "nightly-main-c9456471-py3",
        "nightly-main-e4acb3f1-py3",
        "nightly-main-py3",
    ]


def test_weekend_filter_excludes_saturday_keeps_monday() -> None:
    saturday = make_record("aaaaaaa1", at(3))  # 2023-12-30
    monday = make_record("aaaaaaa2", at(5))  # 2024-01-01
    store = TagStore([saturday, monday])

    assert saturday.is_weekend_build
    assert not monday.is_weekend_build
    assert store.records(RecordFilter()) == (monday,)
    assert store.records(RecordFilter(include_weekends=True)) == (monday, saturday)


def test_suffix_and_branch_filters() -> None:
    py3 = make_record("c9456471", at(0))
    jmx = make_record("c9456472", at(0), suffix="jmx")
    other_branch = make_record("c9456473", at(0), branch="release")
    store = TagStore([py3, jmx, other_branch])

    assert store.records(RecordFilter(branch="main")) == (py3,)
    assert set(store.records(RecordFilter(all_tags=True, branch="main"))) == {py3, jmx}


def test_variants_collapse_to_primary_suffix() -> None:
    py3 = make_record("c9456471", at(0), suffix="py3")
    jmx = make_record("c9456471", at(0, hours=1), suffix="py3-jmx")
    store = TagStore([py3, jmx])

    expanded = store.records(RecordFilter(suffix_filter="", collapse_variants=False))

    assert collapse_variants(expanded, "py3") == (py3,)
    assert expanded == (jmx, py3)
    assert len(store.records(RecordFilter(suffix_filter=""))) == 1


def test_collapse_prefers_digest_when_suffix_ties() -> None:
    plain = make_record("c9456471", at(0), suffix="jmx")
    with_digest = make_record("c9456471", at(-1), suffix="full", digest="sha256:bb")

    assert collapse_variants([plain, with_digest], "py3") == (with_digest,)


def test_staleness_window() -> None:
    store = TagStore([make_record("c9456471", at(0))])
    assert store.is_stale(timedelta(minutes=60), BASE_TIME)

    store.mark_fetched(BASE_TIME)

    assert not store.is_stale(timedelta(minutes=60), BASE_TIME + timedelta(minutes=59))
    assert store.is_stale(timedelta(minutes=60), BASE_TIME + timedelta(minutes=60))


def test_pinned_records_ascending_skips_floating() -> None:
    older = make_record("aaaaaaa1", at(-1))
    newer = make_record("aaaaaaa2", at(0))
    store = TagStore([older, newer, make_record(None, at(0, hours=1))])

    assert store.pinned_records_ascending(RecordFilter()) == (older, newer)


def test_concurrent_merges_do_not_lose_records() -> None:
    store = TagStore()
    batches = [[make_record(f"{w:04x}{i:04x}", at(-i)) for i in range(50)] for w in range(4)]
    threads = [threading.Thread(target=store.merge, args=(batch,)) for batch in batches]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(store) == 200


_records = st.lists(
    st.builds(
        make_record,
        st.text(alphabet="0123456789abcdef", min_size=8, max_size=8),
        st.integers(min_value=-500, max_value=500).map(lambda hours: at(hours=hours)),
        suffix=st.sampled_from(["py3", "jmx"]),
    ),
    max_size=30,
)


@settings(max_examples=75)
@given(first=_records, second=_records)
def test_records_are_non_increasing_by_push_time(first: list, second: list) -> None:
    store = TagStore(first)
    store.merge(second)

    for view in (
        store.all_records(),
        store.records(RecordFilter(include_weekends=True, all_tags=True)),
        store.records(RecordFilter(include_weekends=True)),
    ):
        keys = [record.sort_key for record in view]
        assert keys == sorted(keys)
        for newer, older in zip(view, view[1:]):
            assert newer.last_pushed >= older.last_pushed
