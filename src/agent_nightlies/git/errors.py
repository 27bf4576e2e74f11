"""Errors raised by the git collaborator."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Sequence


class GitError(RuntimeError):
    """Base error for git collaborator failures."""


class GitCommandError(GitError):
    """Raised when a git subprocess command exits non-zero."""

    def __init__(
        self,
        *,
        command: Sequence[str],
        returncode: int,
        stdout: str,
        stderr: str,
    ) -> None:
        self.command = tuple(command)
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        message = f"git command failed ({returncode}): {' '.join(command)}"
        if stderr.strip():
            message = f"{message}: {stderr.strip()}"
        super().__init__(message)


class GitRepositoryNotFoundError(GitError):
    """The configured checkout does not exist or is not a git repository."""

    def __init__(self, repo_path: str, detail: str = "") -> None:
        self.repo_path = repo_path
        message = f"git repository not found at {repo_path}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class CommitNotFoundError(GitError, LookupError):
    """A SHA does not resolve to any commit of the loaded branch history."""

    def __init__(self, sha: str) -> None:
        self.sha = sha
        super().__init__(f"commit {sha} not found on the tracked branch")


class AmbiguousShaError(GitError, LookupError):
    """A short SHA prefix matches more than one commit."""

    def __init__(self, sha: str, candidates: Sequence[str]) -> None:
        self.sha = sha
        self.candidates = tuple(candidates)
        shown = ", ".join(candidate[:12] for candidate in self.candidates[:5])
        super().__init__(f"short sha {sha} is ambiguous ({len(self.candidates)} matches: {shown})")


__all__ = [
    "AmbiguousShaError",
    "CommitNotFoundError",
    "GitCommandError",
    "GitError",
    "GitRepositoryNotFoundError",
]
