"""Domain models and typed errors for the nightly engine."""

from agent_nightlies.domain.errors import (
    DiffError,
    DivergentHistoryError,
    MissingShaReferenceError,
    NightlyError,
    NoDataAvailableError,
    NotEnoughNightliesError,
    TagParseError,
    UnrecognizedTagError,
)
from agent_nightlies.domain.models import (
    CommitRef,
    CorrelationResult,
    CorrelationStatus,
    DiffReport,
    DiffStat,
    MergeResult,
    NightlyRecord,
    RawTag,
    SyncOutcome,
    TagSnapshot,
)

__all__ = [
    "CommitRef",
    "CorrelationResult",
    "CorrelationStatus",
    "DiffError",
    "DiffReport",
    "DiffStat",
    "DivergentHistoryError",
    "MergeResult",
    "MissingShaReferenceError",
    "NightlyError",
    "NightlyRecord",
    "NoDataAvailableError",
    "NotEnoughNightliesError",
    "RawTag",
    "SyncOutcome",
    "TagParseError",
    "TagSnapshot",
    "UnrecognizedTagError",
]
