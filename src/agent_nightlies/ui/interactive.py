"""Interactive nightly diff selection with graceful fallback when Textual is absent.

The picker itself lives in ``picker_app`` and is only imported once Textual is
known to be installed; this module must import cleanly without it.
"""

from __future__ import annotations

import json
import sys
from importlib.util import find_spec
from typing import TYPE_CHECKING, Final, Literal

from agent_nightlies.domain.errors import NotEnoughNightliesError

if TYPE_CHECKING:
    from agent_nightlies.domain.models import NightlyRecord
    from agent_nightlies.engine.query import NightlyQueries
    from agent_nightlies.engine.tag_store import RecordFilter
    from agent_nightlies.ui.render import CLIRenderer

Direction = Literal["previous", "next"]

INSTALL_HINT: Final[str] = (
    "--diff-interactive requires an optional dependency. Install: pip install -e '.[tui]'"
)


def interactive_available() -> bool:
    """Return whether the optional Textual dependency is importable."""

    return find_spec("textual") is not None


def neighbour_pair(
    queries: NightlyQueries,
    record: NightlyRecord,
    direction: Direction,
    record_filter: RecordFilter | None = None,
) -> tuple[NightlyRecord, NightlyRecord] | None:
    """``(older, newer)`` for ``record`` and its consecutive neighbour, if there is one."""

    if direction == "previous":
        previous = queries.previous_consecutive(record, record_filter)
        return None if previous is None else (previous, record)
    following = queries.next_consecutive(record, record_filter)
    return None if following is None else (record, following)


def run_interactive_diff(
    queries: NightlyQueries,
    record_filter: RecordFilter,
    renderer: CLIRenderer,
    *,
    json_output: bool = False,
    no_color: bool = False,
) -> int:
    """Let the user pick a nightly and a direction, then print the diff."""

    if not interactive_available():
        print(INSTALL_HINT, file=sys.stderr)
        return 2

    records = queries.pinned(record_filter)
    if len(records) < 2:
        raise NotEnoughNightliesError(
            f"need at least two pinned nightlies to diff, found {len(records)}"
        )

    from agent_nightlies.ui.picker_app import pick_nightly_pair

    pair = pick_nightly_pair(
        queries, record_filter, records, repository=renderer.repository, no_color=no_color
    )
    if pair is None:
        renderer.warning("no nightly pair selected")
        return 0

    older, newer = pair
    report = queries.diff(older, newer)
    if json_output:
        print(
            json.dumps(
                {"diff": report.to_dict()},
                sort_keys=True,
                separators=(",", ":"),
                ensure_ascii=False,
            )
        )
    else:
        renderer.diff_report(report)
    return 0


__all__ = [
    "INSTALL_HINT",
    "Direction",
    "interactive_available",
    "neighbour_pair",
    "run_interactive_diff",
]
