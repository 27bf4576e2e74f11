"""Frozen dataclass models for nightly tags, commits, sync and diff results."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum

JSONScalar = str | int | float | bool | None
JSONValue = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]

_SATURDAY = 5


def ensure_utc(value: datetime) -> datetime:
    """Return ``value`` as an aware UTC datetime; naive values are taken as UTC."""

    if value.tzinfo is None or value.utcoffset() is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def isoformat_z(value: datetime) -> str:
    return ensure_utc(value).isoformat().replace("+00:00", "Z")


def is_weekend(value: datetime) -> bool:
    """True when the UTC calendar day of ``value`` is a Saturday or Sunday."""

    return ensure_utc(value).weekday() >= _SATURDAY


@dataclass(frozen=True, slots=True)
class RawTag:
    """A tag record exactly as the registry reported it."""

    name: str
    last_pushed: datetime
    digest: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "last_pushed", ensure_utc(self.last_pushed))


@dataclass(frozen=True, slots=True)
class NightlyRecord:
    """One nightly image tag, structured.

    ``short_sha`` is ``None`` for the floating tag (``nightly-main-py3``).
    ``suffix`` is the variant suffix without its leading dash.
    """

    tag_name: str
    branch: str
    short_sha: str | None
    suffix: str
    last_pushed: datetime
    digest: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "last_pushed", ensure_utc(self.last_pushed))

    @property
    def is_pinned(self) -> bool:
        return self.short_sha is not None

    @property
    def is_floating(self) -> bool:
        return self.short_sha is None

    @property
    def is_weekend_build(self) -> bool:
        return is_weekend(self.last_pushed)

    @property
    def sort_key(self) -> tuple[float, str]:
        """Newest first, then lexical tag name for determinism."""

        return (-self.last_pushed.timestamp(), self.tag_name)

    def with_digest(self, digest: str | None) -> NightlyRecord:
        return NightlyRecord(
            tag_name=self.tag_name,
            branch=self.branch,
            short_sha=self.short_sha,
            suffix=self.suffix,
            last_pushed=self.last_pushed,
            digest=digest,
        )

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "tag_name": self.tag_name,
            "branch": self.branch,
            "short_sha": self.short_sha,
            "suffix": self.suffix,
            "last_pushed": isoformat_z(self.last_pushed),
            "digest": self.digest,
        }


@dataclass(frozen=True, slots=True)
class TagSnapshot:
    """Immutable published view of the tag store."""

    records: tuple[NightlyRecord, ...] = ()
    fetched_at: datetime | None = None

    def __len__(self) -> int:
        return len(self.records)


@dataclass(frozen=True, slots=True)
class CommitRef:
    sha: str
    date: datetime
    parents: tuple[str, ...] = ()
    subject: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "date", ensure_utc(self.date))

    @property
    def short_sha(self) -> str:
        return self.sha[:8]

    @property
    def is_merge(self) -> bool:
        return len(self.parents) > 1

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "sha": self.sha,
            "date": isoformat_z(self.date),
            "parents": list(self.parents),
            "subject": self.subject,
        }


@dataclass(frozen=True, slots=True)
class MergeResult:
    added: int = 0
    updated: int = 0
    unchanged: int = 0

    @property
    def changed(self) -> int:
        return self.added + self.updated

    def __add__(self, other: MergeResult) -> MergeResult:
        return MergeResult(
            added=self.added + other.added,
            updated=self.updated + other.updated,
            unchanged=self.unchanged + other.unchanged,
        )


@dataclass(frozen=True, slots=True)
class SyncOutcome:
    """Result of one Fetch Coordinator run.

    ``partial`` means pagination stopped on a transport failure after at
    least one page was merged; ``cancelled`` means the cancellation token
    fired between pages. Either way merged pages stay in the store.
    """

    fetched: bool
    pages_read: int = 0
    partial: bool = False
    cancelled: bool = False
    added: int = 0
    updated: int = 0
    error: str | None = None
    skipped_reason: str | None = None

    @property
    def may_be_stale(self) -> bool:
        return self.partial or self.cancelled

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "fetched": self.fetched,
            "pages_read": self.pages_read,
            "partial": self.partial,
            "cancelled": self.cancelled,
            "added": self.added,
            "updated": self.updated,
            "error": self.error,
            "skipped_reason": self.skipped_reason,
        }


@dataclass(frozen=True, slots=True)
class DiffStat:
    """File-level summary of ``git diff --stat`` between two builds."""

    lines: tuple[str, ...] = ()
    binary_files: int = 0


@dataclass(frozen=True, slots=True)
class CommitStat:
    """Line counts of one commit, as reported by ``git show --shortstat``."""

    insertions: int = 0
    deletions: int = 0


@dataclass(frozen=True, slots=True)
class DiffReport:
    older: NightlyRecord
    newer: NightlyRecord
    commit_count: int
    commits: tuple[CommitRef, ...] = ()
    truncated: bool = False
    reversed: bool = False
    file_summary: DiffStat | None = None
    commit_stats: dict[str, CommitStat] = field(default_factory=dict)

    def to_dict(self) -> dict[str, JSONValue]:
        payload: dict[str, JSONValue] = {
            "older": self.older.to_dict(),
            "newer": self.newer.to_dict(),
            "commit_count": self.commit_count,
            "commits": [self._commit_dict(commit) for commit in self.commits],
            "truncated": self.truncated,
            "reversed": self.reversed,
        }
        if self.file_summary is not None:
            payload["file_summary"] = {
                "lines": list(self.file_summary.lines),
                "binary_files": self.file_summary.binary_files,
            }
        return payload

    def _commit_dict(self, commit: CommitRef) -> dict[str, JSONValue]:
        payload = commit.to_dict()
        stat = self.commit_stats.get(commit.sha)
        if stat is not None:
            payload["insertions"] = stat.insertions
            payload["deletions"] = stat.deletions
        return payload


class CorrelationStatus(StrEnum):
    FOUND = "found"
    PREDATES_KNOWN_NIGHTLIES = "predates_known_nightlies"
    NOT_YET_IN_NIGHTLY = "not_yet_in_nightly"
    NOT_ON_BRANCH = "not_on_branch"


@dataclass(frozen=True, slots=True)
class CorrelationResult:
    target_sha: str
    status: CorrelationStatus
    record: NightlyRecord | None = None
    checked: int = 0
    notes: tuple[str, ...] = field(default=())

    @property
    def found(self) -> bool:
        return self.status is CorrelationStatus.FOUND

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "target_sha": self.target_sha,
            "status": self.status.value,
            "record": None if self.record is None else self.record.to_dict(),
            "checked": self.checked,
            "notes": list(self.notes),
        }


__all__ = [
    "UTC",
    "CommitRef",
    "CommitStat",
    "CorrelationResult",
    "CorrelationStatus",
    "DiffReport",
    "DiffStat",
    "JSONValue",
    "MergeResult",
    "NightlyRecord",
    "RawTag",
    "SyncOutcome",
    "TagSnapshot",
    "ensure_utc",
    "is_weekend",
    "isoformat_z",
]
