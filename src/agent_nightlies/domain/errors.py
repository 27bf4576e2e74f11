"""Typed engine failures. Only the CLI layer formats these for users."""

from __future__ import annotations


class NightlyError(RuntimeError):
    """Base error for the nightly resolution engine."""


class TagParseError(NightlyError, ValueError):
    """Raised when a registry tag cannot be turned into a nightly record."""


class UnrecognizedTagError(TagParseError):
    """Tag does not match a nightly shape or fails the suffix filter."""

    def __init__(self, tag_name: str, reason: str) -> None:
        self.tag_name = tag_name
        self.reason = reason
        super().__init__(f"unrecognized tag {tag_name!r}: {reason}")


class NoDataAvailableError(NightlyError):
    """No cached tags and no registry page could be read."""


class NotEnoughNightliesError(NightlyError):
    """A query needs more pinned nightlies than the filtered timeline holds."""


class DiffError(NightlyError):
    """Base error for nightly diff failures."""


class MissingShaReferenceError(DiffError):
    """One side of a diff is the floating tag and carries no commit SHA."""

    def __init__(self, tag_name: str) -> None:
        self.tag_name = tag_name
        super().__init__(f"cannot diff {tag_name!r}: tag does not reference a commit SHA")


class DivergentHistoryError(DiffError):
    """Neither nightly's commit is an ancestor of the other."""

    def __init__(self, older_sha: str, newer_sha: str) -> None:
        self.older_sha = older_sha
        self.newer_sha = newer_sha
        super().__init__(
            f"commits {older_sha} and {newer_sha} are unrelated on the tracked branch "
            "(history was likely rewritten); refusing to produce a partial diff"
        )


__all__ = [
    "DiffError",
    "DivergentHistoryError",
    "MissingShaReferenceError",
    "NightlyError",
    "NoDataAvailableError",
    "NotEnoughNightliesError",
    "TagParseError",
    "UnrecognizedTagError",
]
