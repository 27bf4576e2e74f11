"""Read-only queries over the tag store.

None of these mutate the store. The floating tag is shown in listings but
never counts as the latest or previous-latest nightly.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from agent_nightlies.domain.errors import NotEnoughNightliesError
from agent_nightlies.domain.models import UTC, ensure_utc, is_weekend
from agent_nightlies.engine.tag_store import RecordFilter

if TYPE_CHECKING:
    from collections.abc import Callable

    from agent_nightlies.domain.models import CorrelationResult, DiffReport, NightlyRecord
    from agent_nightlies.engine.correlator import CommitCorrelator
    from agent_nightlies.engine.diff import NightlyDiffEngine
    from agent_nightlies.engine.tag_store import TagStore


def business_days_between(start: datetime, end: datetime) -> int:
    """Whole days from ``start`` to ``end`` minus the weekend days stepped over."""

    days = (end - start).days
    if days <= 0:
        return days
    weekends = 0
    current = start
    while current <= end:
        if is_weekend(current):
            weekends += 1
        current += timedelta(days=1)
    return days - weekends


def _within_one_day(earlier: datetime, later: datetime, *, skip_weekends: bool) -> bool:
    if skip_weekends:
        if is_weekend(earlier) or is_weekend(later):
            return False
        return business_days_between(earlier, later) <= 1
    return (later - earlier).days <= 1


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)


class NightlyQueries:
    """Query Facade over a :class:`TagStore`."""

    def __init__(
        self,
        store: TagStore,
        *,
        correlator: CommitCorrelator | None = None,
        diff_engine: NightlyDiffEngine | None = None,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._store = store
        self._correlator = correlator
        self._diff_engine = diff_engine
        self._clock = clock

    def timeline(self, record_filter: RecordFilter | None = None) -> tuple[NightlyRecord, ...]:
        return self._store.records(record_filter)

    def pinned(self, record_filter: RecordFilter | None = None) -> tuple[NightlyRecord, ...]:
        """Pinned timeline records, newest first."""

        return tuple(record for record in self._store.records(record_filter) if record.is_pinned)

    def latest(self, record_filter: RecordFilter | None = None) -> NightlyRecord | None:
        pinned = self.pinned(record_filter)
        return pinned[0] if pinned else None

    def previous_latest(self, record_filter: RecordFilter | None = None) -> NightlyRecord | None:
        pinned = self.pinned(record_filter)
        return pinned[1] if len(pinned) > 1 else None

    def in_range(
        self,
        start: datetime | None = None,
        end: datetime | None = None,
        record_filter: RecordFilter | None = None,
    ) -> tuple[NightlyRecord, ...]:
        """Records pushed within ``[start, end]``; either bound may be omitted."""

        lower = None if start is None else ensure_utc(start)
        upper = None if end is None else ensure_utc(end)
        if lower is not None and upper is not None and lower > upper:
            raise ValueError(f"range start {lower.isoformat()} is after end {upper.isoformat()}")
        return tuple(
            record
            for record in self._store.records(record_filter)
            if (lower is None or record.last_pushed >= lower)
            and (upper is None or record.last_pushed <= upper)
        )

    def recent(
        self, days: int, record_filter: RecordFilter | None = None
    ) -> tuple[NightlyRecord, ...]:
        if days <= 0:
            raise ValueError("days must be > 0")
        return self.in_range(self._clock() - timedelta(days=days), None, record_filter)

    def all_tags(
        self,
        include_all_suffixes: bool = True,
        record_filter: RecordFilter | None = None,
    ) -> tuple[NightlyRecord, ...]:
        """Timeline without variant collapse."""

        base = record_filter or RecordFilter()
        return self._store.records(
            replace(base, all_tags=base.all_tags or include_all_suffixes, collapse_variants=False)
        )

    def find_by_sha(self, sha: str) -> tuple[NightlyRecord, ...]:
        """Every known record built from ``sha`` (full or abbreviated)."""

        needle = sha.strip().lower()
        if not needle:
            return ()
        return tuple(
            record
            for record in self._store.all_records()
            if record.short_sha is not None
            and (record.short_sha.startswith(needle) or needle.startswith(record.short_sha))
        )

    def first_containing(
        self, sha: str, record_filter: RecordFilter | None = None
    ) -> CorrelationResult:
        if self._correlator is None:
            raise RuntimeError("commit correlation requires a git checkout")
        # Weekend builds are real nightlies and may be the first to ship a commit.
        base = record_filter or RecordFilter()
        candidates = self._store.pinned_records_ascending(replace(base, include_weekends=True))
        return self._correlator.first_nightly_containing(sha, candidates)

    def diff(self, older: NightlyRecord, newer: NightlyRecord) -> DiffReport:
        if self._diff_engine is None:
            raise RuntimeError("nightly diffs require a git checkout")
        return self._diff_engine.diff(older, newer)

    def diff_latest_two(self, record_filter: RecordFilter | None = None) -> DiffReport:
        pinned = self.pinned(record_filter)
        if len(pinned) < 2:
            raise NotEnoughNightliesError(
                f"need at least two pinned nightlies to diff, found {len(pinned)}"
            )
        return self.diff(pinned[1], pinned[0])

    def previous_consecutive(
        self, record: NightlyRecord, record_filter: RecordFilter | None = None
    ) -> NightlyRecord | None:
        """Newest nightly older than ``record`` within one (business) day."""

        active = record_filter or RecordFilter()
        skip_weekends = not active.include_weekends
        for candidate in self.pinned(active):
            if candidate.last_pushed >= record.last_pushed:
                continue
            if _within_one_day(
                candidate.last_pushed, record.last_pushed, skip_weekends=skip_weekends
            ):
                return candidate
            return None
        return None

    def next_consecutive(
        self, record: NightlyRecord, record_filter: RecordFilter | None = None
    ) -> NightlyRecord | None:
        """Oldest nightly newer than ``record`` within one (business) day."""

        active = record_filter or RecordFilter()
        skip_weekends = not active.include_weekends
        for candidate in reversed(self.pinned(active)):
            if candidate.last_pushed <= record.last_pushed:
                continue
            if _within_one_day(
                record.last_pushed, candidate.last_pushed, skip_weekends=skip_weekends
            ):
                return candidate
            return None
        return None


__all__ = ["NightlyQueries", "business_days_between"]
