"""Output rendering for the agent-nightlies CLI.

Purpose
- Plain-text tag lines, correlation results and the boxed diff report.
- Respect the NO_COLOR environment variable and the --no-color flag.

Formatting helpers (``format_*``) return strings so they can be asserted on
directly; ``CLIRenderer`` prints them.
"""

from __future__ import annotations

import os
import sys
from typing import TYPE_CHECKING, Final

from agent_nightlies.constants import DEFAULT_REPOSITORY, DEFAULT_SOURCE_URL_TEMPLATE
from agent_nightlies.domain.models import CorrelationStatus

if TYPE_CHECKING:
    from collections.abc import Sequence

    from agent_nightlies.domain.models import (
        CorrelationResult,
        DiffReport,
        NightlyRecord,
        SyncOutcome,
    )

_ANSI_BOLD: Final[str] = "\033[1m"
_ANSI_GREEN: Final[str] = "\033[32m"
_ANSI_YELLOW: Final[str] = "\033[33m"
_ANSI_RESET: Final[str] = "\033[0m"

BOX_TOP: Final[str] = "┌─"
BOX_SIDE: Final[str] = "│"
BOX_BOTTOM: Final[str] = "└─────────────────────────────────────"
TRUNCATION_MARK: Final[str] = "…"


def _color_allowed(no_color_flag: bool) -> bool:
    """Check whether color output should be attempted."""

    if no_color_flag:
        return False
    if os.environ.get("NO_COLOR", ""):
        return False
    return hasattr(sys.stdout, "isatty") and sys.stdout.isatty()


def source_url(record: NightlyRecord, template: str = DEFAULT_SOURCE_URL_TEMPLATE) -> str | None:
    if record.short_sha is None:
        return None
    return template.format(sha=record.short_sha)


def format_tag_line(
    record: NightlyRecord,
    *,
    repository: str = DEFAULT_REPOSITORY,
    print_digest: bool = False,
    source_url_template: str = DEFAULT_SOURCE_URL_TEMPLATE,
) -> str:
    """``Tag: <repo>:<name>, Last Pushed: <rfc3339>[, Image Digest: ..][, GitHub URL: ..]``."""

    parts = [f"Tag: {repository}:{record.tag_name}, Last Pushed: {record.last_pushed.isoformat()}"]
    if print_digest:
        parts.append(f"Image Digest: {record.digest or 'unknown'}")
    url = source_url(record, source_url_template)
    if url is not None:
        parts.append(f"GitHub URL: {url}")
    return ", ".join(parts)


def format_diff_report(report: DiffReport) -> list[str]:
    lines = [f"{BOX_TOP} Diff between {report.newer.tag_name} and {report.older.tag_name}"]
    if report.reversed:
        lines.append(f"{BOX_SIDE} (push order disagrees with history; sides swapped)")
    lines.append(f"{BOX_SIDE} {report.commit_count} commits:")
    for commit in report.commits:
        line = f"{BOX_SIDE}   {commit.short_sha} {commit.subject}".rstrip()
        stat = report.commit_stats.get(commit.sha)
        if stat is not None:
            line += f" (+{stat.insertions}, -{stat.deletions})"
        lines.append(line)
    if report.truncated:
        lines.append(f"{BOX_SIDE}   {TRUNCATION_MARK}")

    if report.file_summary is not None:
        lines.append(BOX_SIDE)
        lines.append(f"{BOX_SIDE} File summary:")
        for stat_line in report.file_summary.lines:
            _, sep, stats = stat_line.partition("|")
            if sep and stats.lstrip().startswith("Bin"):
                continue
            lines.append(f"{BOX_SIDE}   {stat_line}")
        if report.file_summary.binary_files > 0:
            lines.append(f"{BOX_SIDE}   ({report.file_summary.binary_files} binary files changed)")
    lines.append(BOX_BOTTOM)
    return lines


def format_correlation(
    result: CorrelationResult,
    *,
    repository: str = DEFAULT_REPOSITORY,
    source_url_template: str = DEFAULT_SOURCE_URL_TEMPLATE,
) -> list[str]:
    status = result.status
    if status is CorrelationStatus.FOUND and result.record is not None:
        lines = [
            f"Commit {result.target_sha} first appears in:",
            format_tag_line(
                result.record, repository=repository, source_url_template=source_url_template
            ),
        ]
    elif status is CorrelationStatus.PREDATES_KNOWN_NIGHTLIES and result.record is not None:
        lines = [
            f"Commit {result.target_sha} predates the oldest known nightly; it is contained in:",
            format_tag_line(
                result.record, repository=repository, source_url_template=source_url_template
            ),
        ]
    elif status is CorrelationStatus.NOT_YET_IN_NIGHTLY:
        lines = [f"Commit {result.target_sha} is not in any known nightly yet."]
    else:
        lines = [f"Commit {result.target_sha} was not found on the tracked branch."]
    lines.extend(f"note: {note}" for note in result.notes)
    return lines


class CLIRenderer:
    """Thin CLI output renderer.

    Produces clean, deterministic plain-text output.
    Respects ``NO_COLOR`` env var and ``--no-color`` flag.
    """

    def __init__(
        self,
        *,
        no_color: bool = False,
        verbose: bool = False,
        repository: str = DEFAULT_REPOSITORY,
        print_digest: bool = False,
        source_url_template: str = DEFAULT_SOURCE_URL_TEMPLATE,
    ) -> None:
        self.verbose = verbose
        self.repository = repository
        self.print_digest = print_digest
        self.source_url_template = source_url_template
        self._color = _color_allowed(no_color)

    def _style(self, text: str, code: str) -> str:
        if not self._color:
            return text
        return f"{code}{text}{_ANSI_RESET}"

    def warning(self, text: str) -> None:
        """Warnings go to stderr so stdout stays parseable."""

        print(self._style(f"Warning: {text}", _ANSI_YELLOW), file=sys.stderr)

    def info(self, text: str) -> None:
        print(text, file=sys.stderr)

    def next_steps(self, steps: Sequence[str]) -> None:
        if not steps:
            return
        print("\nNext steps:", file=sys.stderr)
        for step in steps:
            print(f"  $ {step}", file=sys.stderr)

    def tag(self, record: NightlyRecord) -> None:
        print(
            format_tag_line(
                record,
                repository=self.repository,
                print_digest=self.print_digest,
                source_url_template=self.source_url_template,
            )
        )

    def tags(self, records: Sequence[NightlyRecord]) -> None:
        for record in records:
            self.tag(record)

    def diff_report(self, report: DiffReport) -> None:
        lines = format_diff_report(report)
        print(self._style(lines[0], _ANSI_BOLD + _ANSI_GREEN))
        for line in lines[1:]:
            print(line)

    def correlation(self, result: CorrelationResult) -> None:
        for line in format_correlation(
            result, repository=self.repository, source_url_template=self.source_url_template
        ):
            print(line)

    def sync_warning(self, outcome: SyncOutcome) -> None:
        if outcome.cancelled:
            self.warning("tag fetch was cancelled; results may be stale")
        elif outcome.partial:
            detail = f" ({outcome.error})" if outcome.error else ""
            self.warning(f"tag fetch stopped early{detail}; results may be stale")


def create_renderer(
    *,
    no_color: bool = False,
    verbose: bool = False,
    repository: str = DEFAULT_REPOSITORY,
    print_digest: bool = False,
    source_url_template: str = DEFAULT_SOURCE_URL_TEMPLATE,
) -> CLIRenderer:
    """Create a CLI renderer with the given settings."""

    return CLIRenderer(
        no_color=no_color,
        verbose=verbose,
        repository=repository,
        print_digest=print_digest,
        source_url_template=source_url_template,
    )


__all__ = [
    "CLIRenderer",
    "create_renderer",
    "format_correlation",
    "format_diff_report",
    "format_tag_line",
    "source_url",
]
