from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone

import pytest
from nightly_builders import BASE_TIME, at, make_record

from agent_nightlies.domain.models import (
    UTC,
    CommitRef,
    CorrelationResult,
    CorrelationStatus,
    DiffReport,
    MergeResult,
    NightlyRecord,
    RawTag,
    SyncOutcome,
    ensure_utc,
    is_weekend,
    isoformat_z,
)

pytestmark = pytest.mark.unit


def test_ensure_utc_handles_naive_and_offset_values() -> None:
    naive = datetime(2023, 12, 27, 4, 16)
    offset = datetime(2023, 12, 27, 6, 16, tzinfo=timezone(timedelta(hours=2)))

    assert ensure_utc(naive) == BASE_TIME
    assert ensure_utc(offset) == BASE_TIME
    assert ensure_utc(offset).tzinfo is UTC


def test_isoformat_z_uses_zulu_suffix() -> None:
    assert isoformat_z(BASE_TIME) == "2023-12-27T04:16:00Z"


def test_weekend_is_judged_on_utc_calendar_day() -> None:
    # Friday 23:30 in UTC-2 is already Saturday in UTC.
    late_friday = datetime(2023, 12, 29, 23, 30, tzinfo=timezone(timedelta(hours=-2)))

    assert is_weekend(late_friday)
    assert not is_weekend(at(2))


def test_records_normalize_push_time_to_utc() -> None:
    raw = RawTag(name="nightly-main-py3", last_pushed=datetime(2023, 12, 27, 4, 16))
    record = make_record("c9456471", datetime(2023, 12, 27, 4, 16))

    assert raw.last_pushed == BASE_TIME
    assert record.last_pushed.tzinfo is not None


def test_pinned_and_floating_properties() -> None:
    pinned = make_record("c9456471", BASE_TIME)
    floating = make_record(None, BASE_TIME)

    assert pinned.is_pinned and not pinned.is_floating
    assert floating.is_floating and not floating.is_pinned


def test_sort_key_orders_newest_first_then_by_name() -> None:
    records = [
        make_record("bbbbbbbb", at(0)),
        make_record("aaaaaaaa", at(0)),
        make_record("cccccccc", at(1)),
    ]

    ordered = sorted(records, key=lambda record: record.sort_key)

    assert [record.short_sha for record in ordered] == ["cccccccc", "aaaaaaaa", "bbbbbbbb"]


def test_with_digest_returns_new_record() -> None:
    record = make_record("c9456471", BASE_TIME)

    updated = record.with_digest("sha256:ff")

    assert updated.digest == "sha256:ff"
    assert record.digest is None
    assert isinstance(updated, NightlyRecord)


def test_merge_results_add_up() -> None:
    total = MergeResult(added=1, updated=2) + MergeResult(added=3, unchanged=4)

    assert total == MergeResult(added=4, updated=2, unchanged=4)
    assert total.changed == 6


def test_sync_outcome_staleness() -> None:
    assert not SyncOutcome(fetched=True).may_be_stale
    assert SyncOutcome(fetched=True, partial=True).may_be_stale
    assert SyncOutcome(fetched=False, cancelled=True).may_be_stale


def test_payloads_are_json_serializable() -> None:
    record = make_record("c9456471", BASE_TIME, digest="sha256:aa")
    commit = CommitRef(sha="c9456471" * 5, date=BASE_TIME, parents=("e4acb3f1" * 5,), subject="x")
    report = DiffReport(older=record, newer=record, commit_count=1, commits=(commit,))
    correlation = CorrelationResult(
        target_sha=commit.sha, status=CorrelationStatus.FOUND, record=record, checked=1
    )

    payload = json.loads(
        json.dumps(
            {
                "record": record.to_dict(),
                "diff": report.to_dict(),
                "correlation": correlation.to_dict(),
                "sync": SyncOutcome(fetched=True, pages_read=2).to_dict(),
            }
        )
    )

    assert payload["record"]["last_pushed"] == "2023-12-27T04:16:00Z"
    assert payload["diff"]["commits"][0]["sha"] == commit.sha
    assert "file_summary" not in payload["diff"]
    assert payload["correlation"]["status"] == "found"
    assert payload["sync"]["pages_read"] == 2
    assert commit.short_sha == "c9456471"
