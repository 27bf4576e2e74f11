"""
Commit Correlator: the earliest nightly whose build contains a commit.

A nightly contains a commit when the commit is the nightly's own commit or
one of its ancestors on the tracked branch.

Known limitation: the walk assumes a linear, never-rewritten branch. After
a force push or rebase, nightly SHAs may no longer resolve (they are then
skipped) and answers can be off by one. This is reported through the
result notes rather than patched over.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol

import structlog

from agent_nightlies.domain.models import CorrelationResult, CorrelationStatus
from agent_nightlies.git.errors import AmbiguousShaError, CommitNotFoundError

if TYPE_CHECKING:
    from collections.abc import Iterable
    from datetime import datetime

    from agent_nightlies.domain.models import NightlyRecord


class CommitHistory(Protocol):
    """Commit graph capability needed for correlation."""

    def resolve(self, sha: str) -> str: ...

    def commit_date(self, sha: str) -> datetime: ...

    def is_ancestor(self, ancestor: str, descendant: str) -> bool: ...


class CommitCorrelator:
    def __init__(self, graph: CommitHistory, *, logger: Any | None = None) -> None:
        self._graph = graph
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    def first_nightly_containing(
        self, target_sha: str, records: Iterable[NightlyRecord]
    ) -> CorrelationResult:
        """Walk pinned ``records`` oldest first and return the first that contains ``target_sha``.

        :class:`AmbiguousShaError` for the target propagates; an unknown
        target becomes ``NOT_ON_BRANCH``.
        """

        try:
            target = self._graph.resolve(target_sha)
        except CommitNotFoundError:
            self._logger.info("nightlies_correlation_target_missing", target_sha=target_sha)
            return CorrelationResult(target_sha=target_sha, status=CorrelationStatus.NOT_ON_BRANCH)

        committed_at = self._graph.commit_date(target)
        pinned = sorted(
            (record for record in records if record.short_sha is not None),
            key=lambda record: (record.last_pushed, record.tag_name),
        )
        oldest = pinned[0] if pinned else None
        checked = 0
        notes: list[str] = []

        for record in pinned:
            short_sha = record.short_sha
            if short_sha is None or record.last_pushed < committed_at:
                continue
            try:
                nightly_sha = self._graph.resolve(short_sha)
            except (CommitNotFoundError, AmbiguousShaError) as exc:
                self._logger.warning(
                    "nightlies_correlation_nightly_unresolved",
                    tag_name=record.tag_name,
                    error=str(exc),
                )
                notes.append(f"skipped {record.tag_name}: {exc}")
                continue

            checked += 1
            if not self._graph.is_ancestor(target, nightly_sha):
                continue

            status = CorrelationStatus.FOUND
            if record is oldest and nightly_sha != target:
                status = CorrelationStatus.PREDATES_KNOWN_NIGHTLIES
                notes.append(
                    f"{record.tag_name} is the oldest known nightly; an older, uncached "
                    "nightly may be the first to contain this commit"
                )
            self._logger.info(
                "nightlies_correlation_resolved",
                target_sha=target,
                status=status.value,
                tag_name=record.tag_name,
                checked=checked,
            )
            return CorrelationResult(
                target_sha=target,
                status=status,
                record=record,
                checked=checked,
                notes=tuple(notes),
            )

        self._logger.info("nightlies_correlation_unreleased", target_sha=target, checked=checked)
        return CorrelationResult(
            target_sha=target,
            status=CorrelationStatus.NOT_YET_IN_NIGHTLY,
            checked=checked,
            notes=tuple(notes),
        )


__all__ = ["CommitCorrelator", "CommitHistory"]
