"""Local git checkout access and the in-memory commit graph."""

from agent_nightlies.git.commit_graph import CommitGraph
from agent_nightlies.git.errors import (
    AmbiguousShaError,
    CommitNotFoundError,
    GitCommandError,
    GitError,
    GitRepositoryNotFoundError,
)
from agent_nightlies.git.repository import CommandResult, GitRepository

__all__ = [
    "AmbiguousShaError",
    "CommandResult",
    "CommitGraph",
    "CommitNotFoundError",
    "GitCommandError",
    "GitError",
    "GitRepository",
    "GitRepositoryNotFoundError",
]
