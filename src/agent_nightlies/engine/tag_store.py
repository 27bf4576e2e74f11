"""Deduplicated, time-ordered store of known nightly records.

Writers serialize on a lock and publish a new immutable :class:`TagSnapshot`;
readers take whatever snapshot is current without locking.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from agent_nightlies.constants import DEFAULT_SUFFIX_FILTER
from agent_nightlies.domain.models import UTC, MergeResult, NightlyRecord, TagSnapshot, ensure_utc
from agent_nightlies.engine.normalizer import accepts_suffix

if TYPE_CHECKING:
    from collections.abc import Iterable


@dataclass(frozen=True, slots=True)
class RecordFilter:
    """Timeline view options shared by every query."""

    include_weekends: bool = False
    suffix_filter: str = DEFAULT_SUFFIX_FILTER
    all_tags: bool = False
    branch: str | None = None
    collapse_variants: bool = True

    @property
    def primary_suffix(self) -> str:
        return self.suffix_filter.lstrip("-")

    def accepts(self, record: NightlyRecord) -> bool:
        if self.branch is not None and record.branch != self.branch:
            return False
        if not self.include_weekends and record.is_weekend_build:
            return False
        return accepts_suffix(record.tag_name, self.suffix_filter, all_tags=self.all_tags)


def _ordered(records: Iterable[NightlyRecord]) -> tuple[NightlyRecord, ...]:
    return tuple(sorted(records, key=lambda record: record.sort_key))


def _variant_preference(record: NightlyRecord, primary_suffix: str) -> tuple[object, ...]:
    # Lower sorts first: has sha, primary suffix, has digest, newest, lexical.
    return (
        record.short_sha is None,
        record.suffix != primary_suffix,
        record.digest is None,
        -record.last_pushed.timestamp(),
        record.tag_name,
    )


def collapse_variants(
    records: Iterable[NightlyRecord], primary_suffix: str
) -> tuple[NightlyRecord, ...]:
    """Keep one record per short SHA; floating records pass through."""

    best: dict[str, NightlyRecord] = {}
    passthrough: list[NightlyRecord] = []
    for record in records:
        if record.short_sha is None:
            passthrough.append(record)
            continue
        current = best.get(record.short_sha)
        if current is None or _variant_preference(record, primary_suffix) < _variant_preference(
            current, primary_suffix
        ):
            best[record.short_sha] = record
    return _ordered([*best.values(), *passthrough])


class TagStore:
    """Single source of truth for known nightly records within one process."""

    def __init__(
        self,
        records: Iterable[NightlyRecord] = (),
        *,
        fetched_at: datetime | None = None,
    ) -> None:
        by_name = {record.tag_name: record for record in records}
        self._lock = threading.Lock()
        self._snapshot = TagSnapshot(
            records=_ordered(by_name.values()),
            fetched_at=None if fetched_at is None else ensure_utc(fetched_at),
        )

    def __len__(self) -> int:
        return len(self._snapshot.records)

    @property
    def is_empty(self) -> bool:
        return not self._snapshot.records

    @property
    def fetched_at(self) -> datetime | None:
        return self._snapshot.fetched_at

    def snapshot(self) -> TagSnapshot:
        return self._snapshot

    def all_records(self) -> tuple[NightlyRecord, ...]:
        return self._snapshot.records

    def merge(self, records: Iterable[NightlyRecord]) -> MergeResult:
        """Merge incoming records by ``tag_name`` and publish a new snapshot.

        A record counts as updated when its push time or digest changed. An
        incoming record with no digest keeps the digest already known.
        """

        incoming = list(records)
        with self._lock:
            current = self._snapshot
            by_name = {record.tag_name: record for record in current.records}
            added = updated = unchanged = 0
            for record in incoming:
                known = by_name.get(record.tag_name)
                if known is None:
                    by_name[record.tag_name] = record
                    added += 1
                    continue
                if record.digest is None and known.digest is not None:
                    record = record.with_digest(known.digest)
                if record.last_pushed != known.last_pushed or record.digest != known.digest:
                    by_name[record.tag_name] = record
                    updated += 1
                else:
                    unchanged += 1
            if added or updated:
                self._snapshot = TagSnapshot(
                    records=_ordered(by_name.values()),
                    fetched_at=current.fetched_at,
                )
        return MergeResult(added=added, updated=updated, unchanged=unchanged)

    def mark_fetched(self, fetched_at: datetime) -> None:
        with self._lock:
            self._snapshot = TagSnapshot(
                records=self._snapshot.records,
                fetched_at=ensure_utc(fetched_at),
            )

    def is_stale(self, window: timedelta, now: datetime | None = None) -> bool:
        """True when no complete sync happened within ``window`` of ``now``."""

        fetched_at = self._snapshot.fetched_at
        if fetched_at is None:
            return True
        reference = datetime.now(tz=UTC) if now is None else ensure_utc(now)
        return reference - fetched_at >= window

    def records(self, record_filter: RecordFilter | None = None) -> tuple[NightlyRecord, ...]:
        """Filtered timeline, newest first."""

        active = record_filter or RecordFilter()
        selected = [record for record in self._snapshot.records if active.accepts(record)]
        if active.collapse_variants and not active.all_tags:
            return collapse_variants(selected, active.primary_suffix)
        return tuple(selected)

    def pinned_records_ascending(
        self, record_filter: RecordFilter | None = None
    ) -> tuple[NightlyRecord, ...]:
        """Pinned timeline records, oldest first."""

        pinned = [record for record in self.records(record_filter) if record.is_pinned]
        return tuple(reversed(pinned))


__all__ = ["RecordFilter", "TagStore", "collapse_variants"]
