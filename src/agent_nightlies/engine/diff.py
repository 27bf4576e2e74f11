"""Nightly Diff Engine: commits and file summary between two pinned nightlies."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

from agent_nightlies.constants import DEFAULT_DIFF_MAX_COMMITS
from agent_nightlies.domain.errors import DivergentHistoryError, MissingShaReferenceError
from agent_nightlies.domain.models import DiffReport

if TYPE_CHECKING:
    from agent_nightlies.domain.models import CommitRef, CommitStat, DiffStat, NightlyRecord


class CommitRange(Protocol):
    def resolve(self, sha: str) -> str: ...

    def is_ancestor(self, ancestor: str, descendant: str) -> bool: ...

    def commits_between(
        self, older: str, newer: str, *, no_merges: bool = False
    ) -> tuple[CommitRef, ...]: ...


class DiffStatProvider(Protocol):
    def diff_stat(self, older_sha: str, newer_sha: str) -> DiffStat: ...

    def commit_stat(self, sha: str) -> CommitStat: ...


class NightlyDiffEngine:
    def __init__(
        self,
        graph: CommitRange,
        *,
        stat_provider: DiffStatProvider | None = None,
        max_commits: int = DEFAULT_DIFF_MAX_COMMITS,
    ) -> None:
        if max_commits <= 0:
            raise ValueError("max_commits must be > 0")
        self._graph = graph
        self._stat_provider = stat_provider
        self._max_commits = max_commits

    def diff(self, older: NightlyRecord, newer: NightlyRecord) -> DiffReport:
        """Non-merge commits in ``older..newer``, oldest first.

        When the graph disagrees with push order the pair is swapped and the
        report is marked ``reversed``. Per-commit line counts and the file
        summary are only filled in when a stat provider is configured.
        """

        if older.short_sha is None:
            raise MissingShaReferenceError(older.tag_name)
        if newer.short_sha is None:
            raise MissingShaReferenceError(newer.tag_name)

        older_sha = self._graph.resolve(older.short_sha)
        newer_sha = self._graph.resolve(newer.short_sha)
        if older_sha == newer_sha:
            return DiffReport(older=older, newer=newer, commit_count=0)

        swapped = False
        if not self._graph.is_ancestor(older_sha, newer_sha):
            if not self._graph.is_ancestor(newer_sha, older_sha):
                raise DivergentHistoryError(older_sha, newer_sha)
            older, newer = newer, older
            older_sha, newer_sha = newer_sha, older_sha
            swapped = True

        commits = self._graph.commits_between(older_sha, newer_sha, no_merges=True)
        listed = commits[: self._max_commits]
        file_summary = None
        commit_stats: dict[str, CommitStat] = {}
        if self._stat_provider is not None:
            file_summary = self._stat_provider.diff_stat(older_sha, newer_sha)
            commit_stats = {
                commit.sha: self._stat_provider.commit_stat(commit.sha) for commit in listed
            }
        return DiffReport(
            older=older,
            newer=newer,
            commit_count=len(commits),
            commits=listed,
            truncated=len(commits) > self._max_commits,
            reversed=swapped,
            file_summary=file_summary,
            commit_stats=commit_stats,
        )


__all__ = ["CommitRange", "DiffStatProvider", "NightlyDiffEngine"]
