"""Command-line interface for agent-nightlies."""

from __future__ import annotations

import argparse
import json
import signal
import sys
import threading
import uuid
from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from datetime import date, datetime, time, timedelta
from pathlib import Path
from typing import Any, Final

from agent_nightlies import __version__
from agent_nightlies.config import (
    ConfigLoadError,
    ConfigValidationError,
    dump_effective_config,
    load_config,
)
from agent_nightlies.domain.errors import (
    DiffError,
    NoDataAvailableError,
    NotEnoughNightliesError,
)
from agent_nightlies.domain.models import UTC, CorrelationStatus, SyncOutcome, ensure_utc
from agent_nightlies.engine import (
    CommitCorrelator,
    FetchCoordinator,
    FetchPolicy,
    NightlyDiffEngine,
    NightlyQueries,
    RecordFilter,
    TagStore,
)
from agent_nightlies.engine.normalizer import accepts_suffix
from agent_nightlies.git import (
    AmbiguousShaError,
    CommitGraph,
    CommitNotFoundError,
    GitCommandError,
    GitRepository,
    GitRepositoryNotFoundError,
)
from agent_nightlies.observability import correlation_scope, setup_logging, shutdown_logging
from agent_nightlies.persistence import (
    CachedTags,
    SqliteTagCache,
    TagCacheError,
)
from agent_nightlies.registry import DockerHubRegistry
from agent_nightlies.ui.interactive import (
    INSTALL_HINT,
    interactive_available,
    run_interactive_diff,
)
from agent_nightlies.ui.render import CLIRenderer, create_renderer
from agent_nightlies.utils import CancellationToken

PROG: Final[str] = "agent-nightlies"


class CLIError(RuntimeError):
    """Typed CLI failure with an explicit process exit code."""

    def __init__(self, message: str, exit_code: int = 1) -> None:
        super().__init__(message)
        self.message = message
        self.exit_code = exit_code


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def parse_datetime_arg(raw: str, *, end_of_day: bool = False) -> datetime:
    """ISO-8601 date or datetime; naive values are UTC.

    A bare date means the start of that day, or its last microsecond when
    ``end_of_day`` is set.
    """

    text = raw.strip()
    try:
        if len(text) == 10:
            day = date.fromisoformat(text)
            return datetime.combine(day, time.max if end_of_day else time.min, tzinfo=UTC)
        return ensure_utc(datetime.fromisoformat(text))
    except ValueError as exc:
        raise argparse.ArgumentTypeError(
            f"invalid date {raw!r}; expected ISO-8601 such as 2024-01-31 or 2024-01-31T04:00:00Z"
        ) from exc


def _parse_end_datetime_arg(raw: str) -> datetime:
    return parse_datetime_arg(raw, end_of_day=True)


def _positive_int(raw: str) -> int:
    try:
        value = int(raw)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"expected an integer, got {raw!r}") from exc
    if value <= 0:
        raise argparse.ArgumentTypeError("must be > 0")
    return value


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse parser for every supported query."""

    parser = argparse.ArgumentParser(
        prog=PROG,
        description=(
            "List recent datadog/agent-dev nightly images and the commit each was built from.\n\n"
            "Examples:\n"
            "  agent-nightlies                         Nightlies from the last 7 days\n"
            "  agent-nightlies --latest-only           The most recent nightly\n"
            "  agent-nightlies --agent-sha 1a2b3c4     First nightly containing a commit\n"
            "  agent-nightlies --diff-nightlies        Commits between the last two nightlies\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    selectors = parser.add_mutually_exclusive_group()
    selectors.add_argument(
        "--latest-only", action="store_true", help="Print only the most recent nightly"
    )
    selectors.add_argument(
        "--prev-latest-only",
        action="store_true",
        help="Print only the nightly before the most recent one",
    )
    selectors.add_argument(
        "--agent-sha",
        metavar="SHA",
        default=None,
        help="(experimental) Find the first nightly that contains this commit",
    )
    selectors.add_argument(
        "--target-sha",
        metavar="SHA",
        default=None,
        help="List nightlies built from exactly this commit",
    )
    selectors.add_argument(
        "--diff-nightlies",
        action="store_true",
        help="Show commits between the two most recent nightlies",
    )
    selectors.add_argument(
        "--diff-interactive",
        action="store_true",
        help="Pick a nightly and diff it against its consecutive neighbour (needs the tui extra)",
    )

    parser.add_argument(
        "-a",
        "--all-tags",
        action="store_true",
        help="Include tags of every suffix, not only the configured one (default -py3)",
    )
    parser.add_argument(
        "-p",
        "--print-digest",
        action="store_true",
        help="Print the image digest for each tag",
    )
    parser.add_argument(
        "-f",
        "--from-date",
        type=parse_datetime_arg,
        default=None,
        help="Start of the query range (inclusive, ISO-8601)",
    )
    parser.add_argument(
        "-t",
        "--to-date",
        type=_parse_end_datetime_arg,
        default=None,
        help="End of the query range (inclusive, ISO-8601; a bare date covers the whole day)",
    )
    parser.add_argument(
        "--include-weekends",
        action="store_true",
        help="Keep nightlies pushed on Saturday or Sunday (UTC)",
    )

    fetching = parser.add_mutually_exclusive_group()
    fetching.add_argument(
        "--no-fetch", action="store_true", help="Only use cached tags; never contact the registry"
    )
    fetching.add_argument(
        "--force-fetch",
        action="store_true",
        help="Fetch from the registry even if the cache is fresh",
    )
    parser.add_argument(
        "--num-registry-pages",
        type=_positive_int,
        default=None,
        help="Maximum number of registry pages to read (default: from config, 3)",
    )
    parser.add_argument(
        "--git-repo",
        default=None,
        help="Local datadog-agent checkout used for --agent-sha and diffs",
    )
    parser.add_argument(
        "--config",
        dest="config_path",
        default=None,
        help="Path to TOML config (default: ./nightlies.toml if present)",
    )
    parser.add_argument(
        "--show-config",
        action="store_true",
        help="Print the effective (redacted) configuration as JSON and exit",
    )
    parser.add_argument("--json", action="store_true", help="Emit deterministic JSON output")
    parser.add_argument(
        "--verbose", "-v", action="store_true", default=False, help="Show detailed output"
    )
    parser.add_argument(
        "--no-color",
        action="store_true",
        default=False,
        help="Disable colored output (also respects NO_COLOR env var)",
    )
    parser.set_defaults(handler=_cmd_query)
    return parser


def run_cli(argv: Sequence[str] | None = None) -> int:
    """Parse argv, route to the query handler, and return the process exit code."""

    parser = build_parser()
    namespace = parser.parse_args(list(argv) if argv is not None else None)
    handler = getattr(namespace, "handler", None)
    if not callable(handler):
        parser.print_help(sys.stderr)
        return 2

    try:
        result = handler(namespace)
    except CLIError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return exc.exit_code
    return int(result)


def main(argv: Sequence[str] | None = None) -> int:
    return run_cli(argv)


# ---------------------------------------------------------------------------
# Command handler
# ---------------------------------------------------------------------------


def _cmd_query(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)
    if args.show_config:
        print(dump_effective_config(config))
        return 0

    handle = setup_logging(
        config["observability"], run_id=uuid.uuid4().hex[:16], verbose=bool(args.verbose)
    )
    try:
        with correlation_scope(run_id=handle.run_id):
            return _run_query(args, config)
    finally:
        shutdown_logging(handle)


def _run_query(args: argparse.Namespace, config: Mapping[str, Any]) -> int:
    renderer = _get_renderer(args, config)
    record_filter = _record_filter(args, config)
    if args.diff_interactive and not interactive_available():
        print(INSTALL_HINT, file=sys.stderr)
        return 2

    store, cache = _open_store(config, renderer)
    outcome = _sync(args, config, store, cache)
    if not args.json:
        renderer.sync_warning(outcome)
        if args.verbose:
            renderer.info(
                f"sync: fetched={outcome.fetched} pages={outcome.pages_read} "
                f"added={outcome.added} updated={outcome.updated}"
                + (f" skipped={outcome.skipped_reason}" if outcome.skipped_reason else "")
            )

    queries = NightlyQueries(store)
    sync_payload = outcome.to_dict()

    if args.latest_only or args.prev_latest_only:
        record = (
            queries.latest(record_filter)
            if args.latest_only
            else queries.previous_latest(record_filter)
        )
        if args.json:
            payload = None if record is None else record.to_dict()
            _emit_json({"record": payload, "sync": sync_payload})
        elif record is not None:
            renderer.tag(record)
        if record is None:
            raise CLIError("no matching nightly found", exit_code=1)
        return 0

    if args.target_sha is not None:
        records = tuple(
            record
            for record in queries.find_by_sha(args.target_sha)
            if args.all_tags or accepts_suffix(record.tag_name, record_filter.suffix_filter)
        )
        return _emit_records(
            args,
            renderer,
            records,
            sync_payload,
            empty=f"no nightly was built from {args.target_sha}",
        )

    if args.agent_sha is not None:
        return _correlate(args, config, store, record_filter, renderer, sync_payload)

    if args.diff_nightlies or args.diff_interactive:
        return _diff(args, config, store, record_filter, renderer, sync_payload)

    if args.from_date is not None or args.to_date is not None:
        try:
            records = queries.in_range(args.from_date, args.to_date, record_filter)
        except ValueError as exc:
            raise CLIError(str(exc), exit_code=2) from exc
    else:
        records = queries.recent(int(config["query"]["default_window_days"]), record_filter)
    return _emit_records(args, renderer, records, sync_payload, empty="no matching nightly found")


def _correlate(
    args: argparse.Namespace,
    config: Mapping[str, Any],
    store: TagStore,
    record_filter: RecordFilter,
    renderer: CLIRenderer,
    sync_payload: Mapping[str, object],
) -> int:
    repository, graph = _open_commit_graph(config)
    queries = NightlyQueries(store, correlator=CommitCorrelator(graph))
    if not args.json:
        renderer.warning(
            "--agent-sha is experimental; results depend on the local checkout being current"
        )
    try:
        result = queries.first_containing(args.agent_sha, record_filter)
    except AmbiguousShaError as exc:
        raise CLIError(str(exc), exit_code=2) from exc

    if args.json:
        _emit_json({"correlation": result.to_dict(), "sync": dict(sync_payload)})
    else:
        renderer.correlation(result)

    if result.status is CorrelationStatus.NOT_ON_BRANCH:
        if not args.json:
            renderer.next_steps([repository.fetch_hint])
        return 1
    if result.status is CorrelationStatus.NOT_YET_IN_NIGHTLY:
        return 1
    return 0


def _diff(
    args: argparse.Namespace,
    config: Mapping[str, Any],
    store: TagStore,
    record_filter: RecordFilter,
    renderer: CLIRenderer,
    sync_payload: Mapping[str, object],
) -> int:
    repository, graph = _open_commit_graph(config)
    engine = NightlyDiffEngine(
        graph,
        stat_provider=repository,
        max_commits=int(config["query"]["diff_max_commits"]),
    )
    queries = NightlyQueries(store, diff_engine=engine)

    try:
        if args.diff_interactive:
            return run_interactive_diff(
                queries,
                record_filter,
                renderer,
                json_output=bool(args.json),
                no_color=bool(args.no_color),
            )
        report = queries.diff_latest_two(record_filter)
    except NotEnoughNightliesError as exc:
        raise CLIError(str(exc), exit_code=1) from exc
    except DiffError as exc:
        raise CLIError(str(exc), exit_code=3) from exc
    except CommitNotFoundError as exc:
        raise CLIError(
            f"{exc}; the local checkout may be behind. Run: {repository.fetch_hint}", exit_code=3
        ) from exc
    except GitCommandError as exc:
        raise CLIError(f"git lookup failed: {exc}", exit_code=3) from exc

    if args.json:
        _emit_json({"diff": report.to_dict(), "sync": dict(sync_payload)})
    else:
        renderer.diff_report(report)
    return 0


# ---------------------------------------------------------------------------
# Wiring helpers
# ---------------------------------------------------------------------------


def _load_effective_config(args: argparse.Namespace) -> dict[str, Any]:
    overrides: dict[str, object] = {
        "registry.num_pages": args.num_registry_pages,
        "query.include_weekends": True if args.include_weekends else None,
        "git.repo_path": (
            None if args.git_repo is None else Path(args.git_repo).expanduser().resolve().as_posix()
        ),
    }
    try:
        return load_config(args.config_path, cli_overrides=overrides)
    except (ConfigLoadError, ConfigValidationError) as exc:
        raise CLIError(str(exc), exit_code=2) from exc


def _get_renderer(args: argparse.Namespace, config: Mapping[str, Any]) -> CLIRenderer:
    return create_renderer(
        no_color=bool(args.no_color),
        verbose=bool(args.verbose),
        repository=str(config["registry"]["repository"]),
        print_digest=bool(args.print_digest),
        source_url_template=str(config["tags"]["source_url_template"]),
    )


def _record_filter(args: argparse.Namespace, config: Mapping[str, Any]) -> RecordFilter:
    tags = config["tags"]
    return RecordFilter(
        include_weekends=bool(config["query"]["include_weekends"]),
        suffix_filter=str(tags["suffix"]),
        all_tags=bool(args.all_tags),
        branch=str(tags["branch"]),
        collapse_variants=not args.all_tags,
    )


def _open_store(
    config: Mapping[str, Any], renderer: CLIRenderer
) -> tuple[TagStore, SqliteTagCache]:
    cache = SqliteTagCache(config["cache"]["path"])
    try:
        cached = cache.load()
    except TagCacheError as exc:
        renderer.warning(f"{exc}; ignoring cached tags")
        cached = CachedTags()
    return TagStore(cached.records, fetched_at=cached.fetched_at), cache


def _sync(
    args: argparse.Namespace,
    config: Mapping[str, Any],
    store: TagStore,
    cache: SqliteTagCache,
) -> SyncOutcome:
    registry_cfg = config["registry"]
    try:
        policy = FetchPolicy(
            no_fetch=bool(args.no_fetch),
            force_fetch=bool(args.force_fetch),
            staleness_window=timedelta(minutes=int(config["cache"]["staleness_minutes"])),
            num_registry_pages=int(registry_cfg["num_pages"]),
            include_digests=bool(args.print_digest),
        )
    except ValueError as exc:
        raise CLIError(str(exc), exit_code=2) from exc

    registry = DockerHubRegistry(
        base_url=str(registry_cfg["base_url"]),
        repository=str(registry_cfg["repository"]),
        branch=str(config["tags"]["branch"]),
        page_size=int(registry_cfg["page_size"]),
        timeout_seconds=float(registry_cfg["timeout_seconds"]),
        token_env=str(registry_cfg["token_env"]),
    )
    coordinator = FetchCoordinator(store, registry, cache=cache)
    token = CancellationToken()
    try:
        with correlation_scope(sync_id=uuid.uuid4().hex[:16]), _cancel_on_interrupt(token):
            return coordinator.sync(policy, cancel_token=token)
    except NoDataAvailableError as exc:
        raise CLIError(str(exc), exit_code=3) from exc
    finally:
        registry.close()


@contextmanager
def _cancel_on_interrupt(token: CancellationToken) -> Iterator[CancellationToken]:
    """First Ctrl+C cancels between pages; a second one interrupts immediately."""

    if threading.current_thread() is not threading.main_thread():
        yield token
        return

    def _on_interrupt(signum: int, frame: object) -> None:
        token.cancel()
        signal.signal(signal.SIGINT, signal.default_int_handler)

    previous = signal.signal(signal.SIGINT, _on_interrupt)
    try:
        yield token
    finally:
        signal.signal(signal.SIGINT, previous)


def _open_commit_graph(config: Mapping[str, Any]) -> tuple[GitRepository, CommitGraph]:
    git_cfg = config["git"]
    repo_path = str(git_cfg["repo_path"])
    try:
        repository = GitRepository(repo_path)
        repository.verify()
        graph = CommitGraph.from_repository(
            repository,
            str(git_cfg["branch_ref"]),
            max_commits=int(git_cfg["max_commits"]),
            max_walk_depth=int(git_cfg["max_walk_depth"]),
        )
    except GitRepositoryNotFoundError as exc:
        raise CLIError(
            f"{exc}. Clone datadog-agent there or pass --git-repo <PATH>", exit_code=3
        ) from exc
    except GitCommandError as exc:
        raise CLIError(
            f"git lookup failed: {exc}. Try: git -C {repo_path} fetch --all --tags", exit_code=3
        ) from exc
    return repository, graph


def _emit_records(
    args: argparse.Namespace,
    renderer: CLIRenderer,
    records: Sequence[Any],
    sync_payload: Mapping[str, object],
    *,
    empty: str,
) -> int:
    if args.json:
        _emit_json(
            {"records": [record.to_dict() for record in records], "sync": dict(sync_payload)}
        )
    else:
        renderer.tags(records)
    if not records:
        raise CLIError(empty, exit_code=1)
    return 0


def _emit_json(payload: Mapping[str, object]) -> None:
    """Emit a JSON payload to stdout with deterministic formatting."""

    print(json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False))


__all__ = ["CLIError", "build_parser", "main", "parse_datetime_arg", "run_cli"]
