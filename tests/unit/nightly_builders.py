"""Shared deterministic builders for nightly engine tests."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from datetime import datetime, timedelta
from typing import Final

from agent_nightlies.domain.models import UTC, CommitRef, NightlyRecord, RawTag
from agent_nightlies.registry.base import RegistryTransportError, TagPage

# Wednesday 2023-12-27 04:16 UTC.
BASE_TIME: Final[datetime] = datetime(2023, 12, 27, 4, 16, tzinfo=UTC)


def at(days: float = 0.0, *, hours: float = 0.0) -> datetime:
    return BASE_TIME + timedelta(days=days, hours=hours)


def make_record(
    short_sha: str | None,
    pushed: datetime,
    *,
    branch: str = "main",
    suffix: str = "py3",
    digest: str | None = None,
) -> NightlyRecord:
    parts = ["nightly", branch]
    if short_sha is not None:
        parts.append(short_sha)
    if suffix:
        parts.append(suffix)
    return NightlyRecord(
        tag_name="-".join(parts),
        branch=branch,
        short_sha=short_sha,
        suffix=suffix,
        last_pushed=pushed,
        digest=digest,
    )


def make_raw(name: str, pushed: datetime, digest: str | None = None) -> RawTag:
    return RawTag(name=name, last_pushed=pushed, digest=digest)


def fake_sha(index: int) -> str:
    """Deterministic 40-char lowercase hex SHA."""

    return f"{index:08x}" * 5


def linear_history(count: int, *, start: datetime = BASE_TIME) -> list[CommitRef]:
    """``count`` commits, one per hour, returned newest first as ``git log`` does."""

    commits: list[CommitRef] = []
    for index in range(count):
        parents = (fake_sha(index - 1),) if index > 0 else ()
        commits.append(
            CommitRef(
                sha=fake_sha(index),
                date=start + timedelta(hours=index),
                parents=parents,
                subject=f"commit {index}",
            )
        )
    return list(reversed(commits))


class ScriptedRegistry:
    """In-memory ``TagRegistry`` that serves fixed pages and can fail on demand."""

    def __init__(
        self, pages: Sequence[Iterable[RawTag]], *, fail_on_page: int | None = None
    ) -> None:
        self._pages = [tuple(page) for page in pages]
        self._fail_on_page = fail_on_page
        self.calls: list[tuple[str | None, bool]] = []

    def fetch_tag_page(self, cursor: str | None, *, include_digests: bool = False) -> TagPage:
        self.calls.append((cursor, include_digests))
        index = 0 if cursor is None else int(cursor)
        if self._fail_on_page is not None and index + 1 == self._fail_on_page:
            raise RegistryTransportError("registry returned HTTP 503", status_code=503)
        next_cursor = str(index + 1) if index + 1 < len(self._pages) else None
        return TagPage(tags=self._pages[index], next_cursor=next_cursor)


__all__ = [
    "BASE_TIME",
    "ScriptedRegistry",
    "at",
    "fake_sha",
    "linear_history",
    "make_raw",
    "make_record",
]
