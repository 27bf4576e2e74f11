"""Textual picker for ``--diff-interactive``.

Choose a nightly, then a direction; the app exits with the ``(older, newer)``
pair, or ``None`` when the user quits.
"""

from __future__ import annotations

import os
from functools import partial
from typing import TYPE_CHECKING

from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Vertical
from textual.screen import ModalScreen
from textual.widgets import Footer, Label, ListItem, ListView, Static

from agent_nightlies.ui.interactive import neighbour_pair
from agent_nightlies.ui.render import format_tag_line

if TYPE_CHECKING:
    from collections.abc import Sequence

    from agent_nightlies.domain.models import NightlyRecord
    from agent_nightlies.engine.query import NightlyQueries
    from agent_nightlies.engine.tag_store import RecordFilter
    from agent_nightlies.ui.interactive import Direction

NightlyPair = tuple["NightlyRecord", "NightlyRecord"]

_CSS = """
#picker-help {
    padding: 0 1;
    text-style: italic;
}
#nightly-list {
    height: 1fr;
}
DirectionScreen {
    align: center middle;
}
#direction-dialog {
    width: 70;
    height: auto;
    border: round $accent;
    padding: 1 2;
}
"""

_CSS_NO_COLOR = """
#nightly-list {
    height: 1fr;
}
DirectionScreen {
    align: center middle;
}
#direction-dialog {
    width: 70;
    height: auto;
    border: ascii;
    padding: 1 2;
}
"""

_NIGHTLY_ID_PREFIX = "nightly-"


class DirectionScreen(ModalScreen["Direction | None"]):
    """Ask whether to diff against the previous or the next consecutive nightly."""

    BINDINGS = [Binding("escape", "cancel", "Back", show=True)]

    def __init__(self, record: NightlyRecord) -> None:
        super().__init__()
        self._record = record

    def compose(self) -> ComposeResult:
        with Vertical(id="direction-dialog"):
            yield Label(f"Diff {self._record.tag_name} against:")
            yield ListView(
                ListItem(Label("previous consecutive nightly"), id="direction-previous"),
                ListItem(Label("next consecutive nightly"), id="direction-next"),
                id="direction-list",
            )

    def on_list_view_selected(self, event: ListView.Selected) -> None:
        event.stop()
        self.dismiss("previous" if event.item.id == "direction-previous" else "next")

    def action_cancel(self) -> None:
        self.dismiss(None)


class NightlyPickerApp(App["NightlyPair | None"]):
    """Pick a nightly, then a neighbour to diff it against."""

    TITLE = "agent-nightlies"
    CSS = _CSS
    BINDINGS = [
        Binding("q", "quit_picker", "Quit", show=True),
        Binding("escape", "quit_picker", "Quit", show=False),
    ]

    def __init__(
        self,
        queries: NightlyQueries,
        record_filter: RecordFilter,
        records: Sequence[NightlyRecord],
        *,
        repository: str | None = None,
    ) -> None:
        super().__init__()
        self._queries = queries
        self._record_filter = record_filter
        self._records = tuple(records)
        self._repository = repository

    def compose(self) -> ComposeResult:
        yield Static("Select a nightly with Enter, then choose a direction.", id="picker-help")
        yield ListView(
            *(
                ListItem(Label(self._label(record)), id=f"{_NIGHTLY_ID_PREFIX}{index}")
                for index, record in enumerate(self._records)
            ),
            id="nightly-list",
        )
        yield Footer()

    def _label(self, record: NightlyRecord) -> str:
        if self._repository is None:
            return format_tag_line(record)
        return format_tag_line(record, repository=self._repository)

    def on_list_view_selected(self, event: ListView.Selected) -> None:
        if event.list_view.id != "nightly-list" or event.item.id is None:
            return
        record = self._records[int(event.item.id.removeprefix(_NIGHTLY_ID_PREFIX))]
        self.push_screen(DirectionScreen(record), callback=partial(self._on_direction, record))

    def _on_direction(self, record: NightlyRecord, direction: Direction | None) -> None:
        if direction is None:
            return
        pair = neighbour_pair(self._queries, record, direction, self._record_filter)
        if pair is None:
            self.notify(
                f"No {direction} consecutive nightly for {record.tag_name}", severity="warning"
            )
            return
        self.exit(pair)

    def action_quit_picker(self) -> None:
        self.exit(None)


def pick_nightly_pair(
    queries: NightlyQueries,
    record_filter: RecordFilter,
    records: Sequence[NightlyRecord],
    *,
    repository: str | None = None,
    no_color: bool = False,
) -> NightlyPair | None:
    """Run the picker and return the chosen ``(older, newer)`` pair."""

    effective_no_color = no_color or bool(os.environ.get("NO_COLOR", ""))
    # Textual reads CSS from the class, not from an __init__ keyword.
    NightlyPickerApp.CSS = _CSS_NO_COLOR if effective_no_color else _CSS
    return NightlyPickerApp(queries, record_filter, records, repository=repository).run()


__all__ = ["DirectionScreen", "NightlyPickerApp", "pick_nightly_pair"]
