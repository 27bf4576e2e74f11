"""In-memory commit DAG loaded from ``git log``.

Commits live in an arena list indexed by position in topological log order
(index 0 is the branch head). Parent links are tuples of arena indices;
parents outside the loaded window are dropped. Ancestry queries are
iterative BFS walks with a visited set and an optional depth cap.
"""

from __future__ import annotations

import bisect
import re
from collections import deque
from typing import TYPE_CHECKING, Final

from agent_nightlies.constants import DEFAULT_GIT_BRANCH_REF, DEFAULT_MAX_GRAPH_COMMITS
from agent_nightlies.git.errors import AmbiguousShaError, CommitNotFoundError

if TYPE_CHECKING:
    from collections.abc import Iterable
    from datetime import datetime

    from agent_nightlies.domain.models import CommitRef
    from agent_nightlies.git.repository import GitRepository

MIN_PREFIX_LENGTH: Final[int] = 4
_HEX_RE: Final[re.Pattern[str]] = re.compile(r"^[0-9a-f]+$")


class CommitGraph:
    def __init__(self, commits: Iterable[CommitRef], *, max_walk_depth: int | None = None) -> None:
        self._commits: list[CommitRef] = []
        self._index: dict[str, int] = {}
        for commit in commits:
            if commit.sha in self._index:
                continue
            self._index[commit.sha] = len(self._commits)
            self._commits.append(commit)
        self._parents: list[tuple[int, ...]] = [
            tuple(self._index[parent] for parent in commit.parents if parent in self._index)
            for commit in self._commits
        ]
        self._sorted_shas: list[str] = sorted(self._index)
        if max_walk_depth is not None and max_walk_depth <= 0:
            max_walk_depth = None
        self._max_walk_depth = max_walk_depth

    @classmethod
    def from_repository(
        cls,
        repository: GitRepository,
        ref: str = DEFAULT_GIT_BRANCH_REF,
        *,
        max_commits: int = DEFAULT_MAX_GRAPH_COMMITS,
        max_walk_depth: int | None = None,
    ) -> CommitGraph:
        return cls(
            repository.log_graph(ref, max_commits=max_commits),
            max_walk_depth=max_walk_depth,
        )

    def __len__(self) -> int:
        return len(self._commits)

    def __contains__(self, sha: object) -> bool:
        if not isinstance(sha, str):
            return False
        try:
            self.resolve(sha)
        except (CommitNotFoundError, AmbiguousShaError):
            return False
        return True

    @property
    def head(self) -> CommitRef | None:
        return self._commits[0] if self._commits else None

    def resolve(self, sha: str) -> str:
        """Full SHA for a full or abbreviated ``sha``.

        Raises :class:`CommitNotFoundError` or :class:`AmbiguousShaError`.
        """

        prefix = sha.strip().lower()
        if len(prefix) < MIN_PREFIX_LENGTH or not _HEX_RE.fullmatch(prefix):
            raise CommitNotFoundError(sha)
        if prefix in self._index:
            return prefix
        start = bisect.bisect_left(self._sorted_shas, prefix)
        matches: list[str] = []
        for candidate in self._sorted_shas[start:]:
            if not candidate.startswith(prefix):
                break
            matches.append(candidate)
        if not matches:
            raise CommitNotFoundError(sha)
        if len(matches) > 1:
            raise AmbiguousShaError(sha, matches)
        return matches[0]

    def commit(self, sha: str) -> CommitRef:
        return self._commits[self._index[self.resolve(sha)]]

    def commit_date(self, sha: str) -> datetime:
        return self.commit(sha).date

    def is_ancestor(self, ancestor: str, descendant: str, *, max_depth: int | None = None) -> bool:
        """True when ``ancestor`` is ``descendant`` or reachable through its parents."""

        target = self._index[self.resolve(ancestor)]
        start = self._index[self.resolve(descendant)]
        if target == start:
            return True
        # Parents always sit at higher arena indices in topological order.
        if target < start:
            return False
        return target in self._walk(start, max_depth=self._depth(max_depth), stop_at=target)

    def ancestors(self, sha: str, *, max_depth: int | None = None) -> frozenset[str]:
        """``sha`` and every commit reachable from it."""

        start = self._index[self.resolve(sha)]
        return frozenset(
            self._commits[index].sha
            for index in self._walk(start, max_depth=self._depth(max_depth))
        )

    def commits_since(self, sha: str) -> tuple[CommitRef, ...]:
        """Loaded commits that are not ``sha`` nor one of its ancestors, oldest first."""

        excluded = self._walk(self._index[self.resolve(sha)], max_depth=None)
        return tuple(
            self._commits[index]
            for index in range(len(self._commits) - 1, -1, -1)
            if index not in excluded
        )

    def commits_between(
        self, older: str, newer: str, *, no_merges: bool = False
    ) -> tuple[CommitRef, ...]:
        """The ``older..newer`` range, oldest first.

        With ``no_merges`` commits with more than one parent are left out.
        """

        reachable = self._walk(self._index[self.resolve(newer)], max_depth=None)
        return tuple(
            commit
            for commit in self.commits_since(older)
            if self._index[commit.sha] in reachable and not (no_merges and commit.is_merge)
        )

    def _depth(self, max_depth: int | None) -> int | None:
        if max_depth is not None and max_depth > 0:
            return max_depth
        return self._max_walk_depth

    def _walk(self, start: int, *, max_depth: int | None, stop_at: int | None = None) -> set[int]:
        visited: set[int] = {start}
        queue: deque[tuple[int, int]] = deque([(start, 0)])
        while queue:
            index, depth = queue.popleft()
            if max_depth is not None and depth >= max_depth:
                continue
            for parent in self._parents[index]:
                if parent in visited:
                    continue
                visited.add(parent)
                if parent == stop_at:
                    return visited
                queue.append((parent, depth + 1))
        return visited


__all__ = ["MIN_PREFIX_LENGTH", "CommitGraph"]
