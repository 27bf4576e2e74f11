"""Parse raw registry tag names into structured nightly records.

Two shapes are recognized:

- floating: ``nightly-<branch>-<suffix>`` (e.g. ``nightly-main-py3``)
- pinned:   ``nightly-<branch>-<sha>[-<suffix>]`` (e.g. ``nightly-main-c9456471-py3``)

``<sha>`` is lowercase hex, 7 to 40 characters. The first hex token after
the branch component is taken as the SHA, so branch names may contain
dashes for pinned tags. Parsing is pure.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Final

from agent_nightlies.constants import (
    DEFAULT_SUFFIX_FILTER,
    MAX_SHA_LENGTH,
    MIN_SHORT_SHA_LENGTH,
    NIGHTLY_PREFIX,
    VARIANT_TOKENS,
)
from agent_nightlies.domain.errors import UnrecognizedTagError
from agent_nightlies.domain.models import NightlyRecord

if TYPE_CHECKING:
    from collections.abc import Iterable

    from agent_nightlies.domain.models import RawTag

logger = logging.getLogger(__name__)

_SHA_RE: Final[re.Pattern[str]] = re.compile(
    rf"^[0-9a-f]{{{MIN_SHORT_SHA_LENGTH},{MAX_SHA_LENGTH}}}$"
)
_TOKEN_RE: Final[re.Pattern[str]] = re.compile(r"^[A-Za-z0-9._]+$")


@dataclass(frozen=True, slots=True)
class PinnedTag:
    branch: str
    sha: str
    suffix: str


@dataclass(frozen=True, slots=True)
class FloatingTag:
    branch: str
    suffix: str


@dataclass(frozen=True, slots=True)
class UnrecognizedTag:
    reason: str


TagShape = PinnedTag | FloatingTag | UnrecognizedTag


def parse_tag_name(name: str) -> TagShape:
    """Classify ``name`` as a pinned, floating, or unrecognized nightly tag."""

    tokens = name.split("-")
    if len(tokens) < 3 or tokens[0] != NIGHTLY_PREFIX:
        return UnrecognizedTag(reason=f"expected '{NIGHTLY_PREFIX}-<branch>-...'")
    if any(not _TOKEN_RE.fullmatch(token) for token in tokens[1:]):
        return UnrecognizedTag(reason="empty or invalid tag component")

    for index in range(2, len(tokens)):
        if _SHA_RE.fullmatch(tokens[index]):
            return PinnedTag(
                branch="-".join(tokens[1:index]),
                sha=tokens[index],
                suffix="-".join(tokens[index + 1 :]),
            )

    # Floating: trailing variant tokens form the suffix, the rest is the branch.
    split = len(tokens) - 1
    while split > 2 and tokens[split - 1] in VARIANT_TOKENS:
        split -= 1
    return FloatingTag(branch="-".join(tokens[1:split]), suffix="-".join(tokens[split:]))


def accepts_suffix(name: str, suffix_filter: str, *, all_tags: bool = False) -> bool:
    """Suffix acceptance step; ``all_tags`` bypasses it."""

    if all_tags or not suffix_filter:
        return True
    return name.endswith(suffix_filter)


def format_tag_name(record: NightlyRecord) -> str:
    """Inverse of :func:`parse_tag_name` for a structured record."""

    parts = [NIGHTLY_PREFIX, record.branch]
    if record.short_sha is not None:
        parts.append(record.short_sha)
    if record.suffix:
        parts.append(record.suffix)
    return "-".join(parts)


def normalize(
    raw: RawTag,
    *,
    suffix_filter: str = DEFAULT_SUFFIX_FILTER,
    all_tags: bool = False,
) -> NightlyRecord:
    """Turn a registry tag into a :class:`NightlyRecord`.

    Raises :class:`UnrecognizedTagError` for unknown shapes and for tags
    rejected by the suffix filter.
    """

    if not accepts_suffix(raw.name, suffix_filter, all_tags=all_tags):
        raise UnrecognizedTagError(raw.name, f"does not end with {suffix_filter!r}")

    shape = parse_tag_name(raw.name)
    if isinstance(shape, UnrecognizedTag):
        raise UnrecognizedTagError(raw.name, shape.reason)
    if isinstance(shape, PinnedTag):
        return NightlyRecord(
            tag_name=raw.name,
            branch=shape.branch,
            short_sha=shape.sha,
            suffix=shape.suffix,
            last_pushed=raw.last_pushed,
            digest=raw.digest,
        )
    return NightlyRecord(
        tag_name=raw.name,
        branch=shape.branch,
        short_sha=None,
        suffix=shape.suffix,
        last_pushed=raw.last_pushed,
        digest=raw.digest,
    )


@dataclass(frozen=True, slots=True)
class TagNormalizer:
    """Normalizer bound to one suffix policy; skips what it cannot parse."""

    suffix_filter: str = DEFAULT_SUFFIX_FILTER
    all_tags: bool = False
    branch: str | None = None

    def normalize(self, raw: RawTag) -> NightlyRecord:
        record = normalize(raw, suffix_filter=self.suffix_filter, all_tags=self.all_tags)
        if self.branch is not None and record.branch != self.branch:
            raise UnrecognizedTagError(raw.name, f"branch {record.branch!r} is not tracked")
        return record

    def normalize_many(self, raws: Iterable[RawTag]) -> tuple[list[NightlyRecord], int]:
        """Return parsed records and the number of skipped tags."""

        records: list[NightlyRecord] = []
        skipped = 0
        for raw in raws:
            try:
                records.append(self.normalize(raw))
            except UnrecognizedTagError as exc:
                skipped += 1
                logger.debug("skipping tag", extra={"tag": exc.tag_name, "reason": exc.reason})
        return records, skipped


__all__ = [
    "FloatingTag",
    "PinnedTag",
    "TagNormalizer",
    "TagShape",
    "UnrecognizedTag",
    "accepts_suffix",
    "format_tag_name",
    "normalize",
    "parse_tag_name",
]
