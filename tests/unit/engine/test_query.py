"""Query Facade behaviour over a populated tag store."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any

import pytest
from nightly_builders import (
    BASE_TIME,
    ScriptedRegistry,
    at,
    fake_sha,
    linear_history,
    make_raw,
    make_record,
)

from agent_nightlies.domain.errors import NotEnoughNightliesError
from agent_nightlies.domain.models import UTC, CorrelationStatus, NightlyRecord
from agent_nightlies.engine.correlator import CommitCorrelator
from agent_nightlies.engine.diff import NightlyDiffEngine
from agent_nightlies.engine.fetch import FetchCoordinator
from agent_nightlies.engine.query import NightlyQueries, business_days_between
from agent_nightlies.engine.tag_store import RecordFilter, TagStore
from agent_nightlies.git.commit_graph import CommitGraph

pytestmark = pytest.mark.unit

# Tue 2023-12-26, Fri 2023-12-29, Sat 2023-12-30, Mon 2024-01-01.
TUESDAY = make_record("aaaaaaa1", at(-1))
FRIDAY = make_record("aaaaaaa2", at(2))
SATURDAY = make_record("aaaaaaa3", at(3))
MONDAY = make_record("aaaaaaa4", at(5))


def _queries(*records: NightlyRecord, **kwargs: Any) -> NightlyQueries:
    kwargs.setdefault("clock", lambda: at(6))
    return NightlyQueries(TagStore(records), **kwargs)


def test_latest_and_previous_latest_skip_floating_tag() -> None:
    store = TagStore()
    registry = ScriptedRegistry(
        [
            [
                make_raw("nightly-main-py3", datetime(2023, 12, 27, 4, 16, tzinfo=UTC)),
                make_raw("nightly-main-c9456471-py3", datetime(2023, 12, 27, 4, 16, tzinfo=UTC)),
                make_raw("nightly-main-e4acb3f1-py3", datetime(2023, 12, 26, 4, 15, tzinfo=UTC)),
            ]
        ]
    )
    FetchCoordinator(store, registry, clock=lambda: BASE_TIME).sync()
    queries = NightlyQueries(store, clock=lambda: BASE_TIME)

    latest = queries.latest()
    previous = queries.previous_latest()

    assert latest is not None and latest.short_sha == "c9456471"
    assert previous is not None and previous.short_sha == "e4acb3f1"
    assert "nightly-main-py3" in {record.tag_name for record in queries.timeline()}


def test_latest_is_none_without_pinned_records() -> None:
    queries = _queries(make_record(None, at(0)))

    assert queries.latest() is None
    assert queries.previous_latest() is None


def test_in_range_is_inclusive_and_validates_bounds() -> None:
    queries = _queries(TUESDAY, FRIDAY, MONDAY)

    assert queries.in_range(at(-1), at(2)) == (FRIDAY, TUESDAY)
    assert queries.in_range(start=at(0)) == (MONDAY, FRIDAY)
    assert queries.in_range(end=at(0)) == (TUESDAY,)
    with pytest.raises(ValueError, match="after end"):
        queries.in_range(at(2), at(-1))


def test_recent_counts_back_from_clock() -> None:
    queries = _queries(TUESDAY, FRIDAY, MONDAY)

    assert queries.recent(2) == (MONDAY,)
    assert queries.recent(10) == (MONDAY, FRIDAY, TUESDAY)
    with pytest.raises(ValueError):
        queries.recent(0)


def test_all_tags_bypasses_suffix_filter_and_collapse() -> None:
    jmx = make_record("aaaaaaa2", at(2, hours=1), suffix="py3-jmx")
    queries = _queries(FRIDAY, jmx)

    assert queries.timeline() == (FRIDAY,)
    assert queries.all_tags() == (jmx, FRIDAY)


def test_find_by_sha_matches_either_prefix_direction() -> None:
    queries = _queries(TUESDAY, FRIDAY)

    assert queries.find_by_sha("aaaaaaa2") == (FRIDAY,)
    assert queries.find_by_sha("AAAAAAA2" + "0" * 32) == (FRIDAY,)
    assert set(queries.find_by_sha("aaaa")) == {TUESDAY, FRIDAY}
    assert queries.find_by_sha("  ") == ()


def test_first_containing_requires_correlator_and_includes_weekends() -> None:
    history = linear_history(6, start=at(2, hours=-3))
    weekend_build = make_record(fake_sha(3)[:8], at(3))
    monday_build = make_record(fake_sha(5)[:8], at(5))
    graph = CommitGraph(history)

    with pytest.raises(RuntimeError):
        _queries(weekend_build).first_containing(fake_sha(2))

    queries = _queries(weekend_build, monday_build, correlator=CommitCorrelator(graph))
    result = queries.first_containing(fake_sha(2))

    assert result.status is CorrelationStatus.PREDATES_KNOWN_NIGHTLIES
    assert result.record == weekend_build


def test_diff_latest_two_uses_newest_pinned_pair() -> None:
    history = linear_history(4)
    older = make_record(fake_sha(1)[:8], at(0, hours=2))
    newer = make_record(fake_sha(3)[:8], at(0, hours=4))
    queries = _queries(
        older,
        newer,
        make_record(None, at(0, hours=5)),
        diff_engine=NightlyDiffEngine(CommitGraph(history)),
    )

    report = queries.diff_latest_two()

    assert report.older == older
    assert report.newer == newer
    assert report.commit_count == 2


def test_diff_latest_two_needs_two_pinned_nightlies() -> None:
    queries = _queries(FRIDAY, make_record(None, at(5)))

    with pytest.raises(NotEnoughNightliesError, match="found 1"):
        queries.diff_latest_two()
    with pytest.raises(RuntimeError):
        queries.diff(FRIDAY, FRIDAY)


def test_business_days_skip_weekend() -> None:
    assert business_days_between(FRIDAY.last_pushed, MONDAY.last_pushed) == 1
    assert business_days_between(TUESDAY.last_pushed, FRIDAY.last_pushed) == 3
    assert business_days_between(MONDAY.last_pushed, FRIDAY.last_pushed) < 0


def test_consecutive_neighbours_bridge_weekend() -> None:
    queries = _queries(TUESDAY, FRIDAY, SATURDAY, MONDAY)

    assert queries.previous_consecutive(MONDAY) == FRIDAY
    assert queries.next_consecutive(FRIDAY) == MONDAY
    assert queries.previous_consecutive(FRIDAY) is None
    assert queries.next_consecutive(MONDAY) is None


def test_consecutive_neighbours_with_weekends_use_calendar_days() -> None:
    queries = _queries(TUESDAY, FRIDAY, SATURDAY, MONDAY)
    with_weekends = RecordFilter(include_weekends=True)

    assert queries.previous_consecutive(MONDAY, with_weekends) is None
    assert queries.previous_consecutive(SATURDAY, with_weekends) == FRIDAY
    assert queries.next_consecutive(FRIDAY, with_weekends) == SATURDAY


def test_queries_never_mutate_the_store() -> None:
    store = TagStore([TUESDAY, FRIDAY])
    before = store.snapshot()
    queries = NightlyQueries(store, clock=lambda: at(6) + timedelta(days=1))

    queries.latest()
    queries.recent(30)
    queries.all_tags()
    queries.find_by_sha("aaaa")

    assert store.snapshot() is before
