"""Deterministic wrapper around the ``git`` CLI for a local checkout."""

from __future__ import annotations

import os
import re
import subprocess
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Final

from agent_nightlies.constants import DEFAULT_GIT_BRANCH_REF, DEFAULT_MAX_GRAPH_COMMITS
from agent_nightlies.domain.models import UTC, CommitRef, CommitStat, DiffStat
from agent_nightlies.git.errors import GitCommandError, GitRepositoryNotFoundError

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

LOG_GRAPH_FORMAT: Final[str] = "%H%x1f%ct%x1f%P%x1f%s"
_FIELD_SEP: Final[str] = "\x1f"
_REF_RE: Final[re.Pattern[str]] = re.compile(r"^[A-Za-z0-9._/@^~{}-]+$")
_INSERTIONS_RE: Final[re.Pattern[str]] = re.compile(r"(\d+) insertions?\(\+\)")
_DELETIONS_RE: Final[re.Pattern[str]] = re.compile(r"(\d+) deletions?\(-\)")


@dataclass(frozen=True, slots=True)
class CommandResult:
    """Normalized subprocess result."""

    command: tuple[str, ...]
    cwd: str
    returncode: int
    stdout: str
    stderr: str


def parse_log_graph(output: str) -> list[CommitRef]:
    """Parse ``git log --format=LOG_GRAPH_FORMAT`` output, newest first."""

    commits: list[CommitRef] = []
    for line in output.splitlines():
        if not line.strip():
            continue
        parts = line.split(_FIELD_SEP, 3)
        if len(parts) < 3:
            raise ValueError(f"unexpected git log line: {line!r}")
        sha, timestamp, parents = parts[0], parts[1], parts[2]
        subject = parts[3] if len(parts) > 3 else ""
        commits.append(
            CommitRef(
                sha=sha.strip().lower(),
                date=datetime.fromtimestamp(int(timestamp), tz=UTC),
                parents=tuple(parent.lower() for parent in parents.split()),
                subject=subject,
            )
        )
    return commits


def parse_numstat_binary_count(output: str) -> int:
    """Binary files show up in ``--numstat`` as ``-\t-\tpath``."""

    return sum(1 for line in output.splitlines() if line.startswith("-\t-\t"))


def parse_shortstat(output: str) -> CommitStat:
    """Line counts from a ``--shortstat`` summary; absent counts are zero."""

    for line in output.splitlines():
        insertions = _INSERTIONS_RE.search(line)
        deletions = _DELETIONS_RE.search(line)
        if insertions is None and deletions is None:
            continue
        return CommitStat(
            insertions=int(insertions.group(1)) if insertions else 0,
            deletions=int(deletions.group(1)) if deletions else 0,
        )
    return CommitStat()


class GitRepository:
    """Read-only access to a local checkout used for commit correlation."""

    def __init__(
        self,
        repo_path: Path | str,
        *,
        env_overrides: Mapping[str, str] | None = None,
    ) -> None:
        self.repo_path = Path(repo_path).expanduser()
        self._env_overrides = dict(env_overrides or {})
        if not self.repo_path.is_dir():
            raise GitRepositoryNotFoundError(self.repo_path.as_posix(), "directory does not exist")
        self.repo_path = self.repo_path.resolve()

    @property
    def fetch_hint(self) -> str:
        return f"git -C {self.repo_path.as_posix()} fetch --all --tags"

    def verify(self) -> None:
        """Raise :class:`GitRepositoryNotFoundError` unless this is a git work tree."""

        result = self._run_git(["rev-parse", "--git-dir"], check=False)
        if result.returncode != 0:
            raise GitRepositoryNotFoundError(
                self.repo_path.as_posix(), result.stderr.strip() or "not a git repository"
            )

    def resolve_ref(self, ref: str) -> str:
        self._check_ref(ref)
        return self._run_git(["rev-parse", "--verify", f"{ref}^{{commit}}"]).stdout.strip()

    def log_graph(
        self,
        ref: str = DEFAULT_GIT_BRANCH_REF,
        *,
        max_commits: int = DEFAULT_MAX_GRAPH_COMMITS,
    ) -> list[CommitRef]:
        """History reachable from ``ref`` in topological order, newest first."""

        if max_commits <= 0:
            raise ValueError("max_commits must be > 0")
        self._check_ref(ref)
        result = self._run_git(
            [
                "log",
                "--topo-order",
                f"--max-count={max_commits}",
                f"--format={LOG_GRAPH_FORMAT}",
                ref,
                "--",
            ]
        )
        return parse_log_graph(result.stdout)

    def diff_stat(self, older_sha: str, newer_sha: str) -> DiffStat:
        self._check_ref(older_sha)
        self._check_ref(newer_sha)
        stat = self._run_git(["diff", "--stat", older_sha, newer_sha, "--"])
        numstat = self._run_git(["diff", "--numstat", older_sha, newer_sha, "--"])
        lines = tuple(line.rstrip() for line in stat.stdout.splitlines() if line.strip())
        return DiffStat(lines=lines, binary_files=parse_numstat_binary_count(numstat.stdout))

    def commit_stat(self, sha: str) -> CommitStat:
        self._check_ref(sha)
        result = self._run_git(["show", "--shortstat", "--format=", sha, "--"])
        return parse_shortstat(result.stdout)

    def _check_ref(self, ref: str) -> None:
        if not ref or ref.startswith("-") or not _REF_RE.fullmatch(ref):
            raise ValueError(f"unsafe git ref: {ref!r}")

    def _run_git(
        self,
        args: Sequence[str],
        *,
        check: bool = True,
    ) -> CommandResult:
        command = ("git", *args)
        env = os.environ.copy()
        env["GIT_TERMINAL_PROMPT"] = "0"
        env.setdefault("GIT_CONFIG_NOSYSTEM", "1")
        env.update(self._env_overrides)

        completed = subprocess.run(
            command,
            cwd=self.repo_path,
            env=env,
            text=True,
            capture_output=True,
            check=False,
        )

        result = CommandResult(
            command=command,
            cwd=self.repo_path.as_posix(),
            returncode=completed.returncode,
            stdout=completed.stdout,
            stderr=completed.stderr,
        )

        if check and result.returncode != 0:
            raise GitCommandError(
                command=result.command,
                returncode=result.returncode,
                stdout=result.stdout,
                stderr=result.stderr,
            )

        return result


__all__ = [
    "LOG_GRAPH_FORMAT",
    "CommandResult",
    "GitRepository",
    "parse_log_graph",
    "parse_numstat_binary_count",
    "parse_shortstat",
]
