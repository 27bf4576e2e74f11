"""Nightly Resolution & Correlation Engine."""

from agent_nightlies.engine.correlator import CommitCorrelator
from agent_nightlies.engine.diff import NightlyDiffEngine
from agent_nightlies.engine.fetch import FetchCoordinator, FetchPolicy
from agent_nightlies.engine.normalizer import (
    FloatingTag,
    PinnedTag,
    TagNormalizer,
    UnrecognizedTag,
    format_tag_name,
    normalize,
    parse_tag_name,
)
from agent_nightlies.engine.query import NightlyQueries
from agent_nightlies.engine.tag_store import RecordFilter, TagStore

__all__ = [
    "CommitCorrelator",
    "FetchCoordinator",
    "FetchPolicy",
    "FloatingTag",
    "NightlyDiffEngine",
    "NightlyQueries",
    "PinnedTag",
    "RecordFilter",
    "TagNormalizer",
    "TagStore",
    "UnrecognizedTag",
    "format_tag_name",
    "normalize",
    "parse_tag_name",
]
