"""Run-scoped JSON-lines logging.

Records cross a bounded queue to a ``QueueListener`` thread, which writes one
JSON object per line to stderr and, when ``log_dir`` is set, to
``<log_dir>/<run_id>/nightlies.jsonl``. Engine modules log through
``structlog``; :func:`configure_structlog` renders those events into the same
stdlib pipeline, so event keywords arrive as record attributes and are
emitted under ``fields``.
"""

from __future__ import annotations

import atexit
import contextvars
import copy
import json
import logging
import logging.handlers
import queue
import re
import sys
import threading
from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from types import MappingProxyType
from typing import Any, Final, TextIO

import structlog

from agent_nightlies.domain.models import UTC, isoformat_z

Redactor = Callable[[Any], Any]

REDACTED: Final[str] = "***REDACTED***"
LOG_FILENAME: Final[str] = "nightlies.jsonl"
ROOT_LOGGER: Final[str] = "agent_nightlies"
QUEUE_CAPACITY: Final[int] = 4096

_SECRET_KEY_HINTS: Final[tuple[str, ...]] = (
    "api_key",
    "apikey",
    "authorization",
    "cookie",
    "credential",
    "password",
    "secret",
    "token",
)
_BEARER: Final[re.Pattern[str]] = re.compile(r"(?i)\bbearer\s+[A-Za-z0-9._~+/-]+=*")
_ASSIGNMENT: Final[re.Pattern[str]] = re.compile(
    r"(?i)\b(api[_-]?key|token|password|secret|authorization)\b\s*([:=])\s*([^\s,;]+)"
)
_HUB_PAT: Final[re.Pattern[str]] = re.compile(r"\bdckr_pat_[A-Za-z0-9_-]{8,}\b")

# Attributes every LogRecord carries; anything else came in through ``extra``.
_RECORD_ATTRS: Final[frozenset[str]] = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", None, None))
) | {"message", "asctime", "correlation"}

_TRACEBACKS: Final[logging.Formatter] = logging.Formatter()

_correlation: contextvars.ContextVar[Mapping[str, str]] = contextvars.ContextVar(
    "agent_nightlies_correlation", default=MappingProxyType({})
)

_active_lock = threading.Lock()
_active: LoggingHandle | None = None


# ---------------------------------------------------------------------------
# Correlation
# ---------------------------------------------------------------------------


def get_correlation_context() -> dict[str, str]:
    return dict(_correlation.get())


@contextmanager
def correlation_scope(**fields: str | None) -> Iterator[None]:
    """Bind correlation fields (``run_id``, ``sync_id``) for records logged in scope.

    Passing ``None`` unbinds a field inherited from an outer scope.
    """

    bound = dict(_correlation.get())
    for key, value in fields.items():
        if value is None:
            bound.pop(key, None)
        elif not value.strip():
            raise ValueError(f"correlation field {key!r} must not be blank")
        else:
            bound[key] = value.strip()
    token = _correlation.set(MappingProxyType(bound))
    try:
        yield
    finally:
        _correlation.reset(token)


# ---------------------------------------------------------------------------
# Redaction
# ---------------------------------------------------------------------------


def default_log_redactor(value: Any) -> Any:
    """Mask secret-looking keys, bearer tokens, Docker Hub PATs and ``key=value`` secrets."""

    return _redact(value, key=None)


def _keep(value: Any) -> Any:
    return value


def _redact(value: Any, *, key: str | None) -> Any:
    if key is not None and any(hint in key.lower() for hint in _SECRET_KEY_HINTS):
        return REDACTED
    if isinstance(value, str):
        return _redact_text(value)
    if isinstance(value, Mapping):
        return {str(name): _redact(item, key=str(name)) for name, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_redact(item, key=None) for item in value]
    return value


def _redact_text(text: str) -> str:
    # Bearer values first so "Authorization: Bearer x" loses the token itself.
    text = _BEARER.sub(f"Bearer {REDACTED}", text)
    text = _ASSIGNMENT.sub(lambda match: f"{match.group(1)}{match.group(2)}{REDACTED}", text)
    return _HUB_PAT.sub(REDACTED, text)


# ---------------------------------------------------------------------------
# Formatting
# ---------------------------------------------------------------------------


def _json_fallback(value: object) -> object:
    if isinstance(value, datetime):
        return isoformat_z(value)
    if isinstance(value, Path):
        return value.as_posix()
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    if isinstance(value, (set, frozenset)):
        return sorted(repr(item) for item in value)
    return repr(value)


class JsonLineFormatter(logging.Formatter):
    """One canonical JSON object per record."""

    def __init__(
        self,
        *,
        redactor: Redactor = default_log_redactor,
        base_context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__()
        self._redactor = redactor
        self._base_context = dict(base_context or {})

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, tz=UTC)
        event: dict[str, Any] = {
            "timestamp": created.isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": self._redactor(record.getMessage()),
            **self._base_context,
            **getattr(record, "correlation", {}),
        }

        extras = {
            name: value
            for name, value in vars(record).items()
            if name not in _RECORD_ATTRS and not name.startswith("_")
        }
        if extras:
            event["fields"] = self._redactor(extras)

        traceback_text = getattr(record, "_traceback", None)
        if traceback_text is None and record.exc_info:
            traceback_text = self.formatException(record.exc_info)
        if traceback_text:
            event["exception"] = self._redactor(traceback_text)

        return json.dumps(
            event,
            sort_keys=True,
            separators=(",", ":"),
            ensure_ascii=False,
            default=_json_fallback,
        )


class _DroppingQueueHandler(logging.handlers.QueueHandler):
    """Never blocks the caller; records that do not fit the queue are counted."""

    def __init__(self, log_queue: queue.Queue[Any]) -> None:
        super().__init__(log_queue)
        self._dropped = 0
        self._dropped_lock = threading.Lock()

    @property
    def dropped(self) -> int:
        with self._dropped_lock:
            return self._dropped

    def prepare(self, record: logging.LogRecord) -> logging.LogRecord:
        # Runs on the logging thread: capture contextvars and the traceback here.
        prepared = copy.copy(record)
        prepared.correlation = get_correlation_context()
        prepared.msg = record.getMessage()
        prepared.args = None
        if record.exc_info:
            prepared._traceback = _TRACEBACKS.formatException(record.exc_info)
        prepared.exc_info = None
        prepared.exc_text = None
        return prepared

    def enqueue(self, record: logging.LogRecord) -> None:
        try:
            self.queue.put_nowait(record)
        except queue.Full:
            with self._dropped_lock:
                self._dropped += 1


# ---------------------------------------------------------------------------
# Setup and teardown
# ---------------------------------------------------------------------------


@dataclass(slots=True, eq=False)
class LoggingHandle:
    """The active logging pipeline of one run."""

    run_id: str
    log_path: Path | None
    _logger: logging.Logger
    _queue_handler: _DroppingQueueHandler
    _listener: logging.handlers.QueueListener
    _sinks: tuple[logging.Handler, ...]
    _closed: bool = False
    _close_lock: threading.Lock = field(default_factory=threading.Lock)

    @property
    def dropped_records(self) -> int:
        return self._queue_handler.dropped

    @property
    def is_shutdown(self) -> bool:
        return self._closed

    def shutdown(self) -> None:
        with self._close_lock:
            if self._closed:
                return
            self._listener.stop()
            self._logger.removeHandler(self._queue_handler)
            self._queue_handler.close()
            for sink in self._sinks:
                sink.flush()
                sink.close()
            self._closed = True


def setup_logging(
    observability_config: Mapping[str, object] | None = None,
    *,
    run_id: str,
    verbose: bool = False,
    stream: TextIO | None = None,
    queue_size: int = QUEUE_CAPACITY,
) -> LoggingHandle:
    """Install the pipeline described by an ``[observability]`` config section.

    Replaces any pipeline installed earlier in the process. ``verbose`` lowers
    the stderr level to DEBUG; the file sink always keeps DEBUG records.
    """

    global _active

    run_id = run_id.strip()
    if not run_id:
        raise ValueError("run_id must not be empty")
    if queue_size <= 0:
        raise ValueError("queue_size must be > 0")

    cfg = observability_config or {}
    level = logging.DEBUG if verbose else _parse_level(cfg.get("log_level", "WARNING"))
    redactor = default_log_redactor if cfg.get("redact_secrets", True) else _keep
    formatter = JsonLineFormatter(redactor=redactor, base_context={"run_id": run_id})

    shutdown_logging()

    stderr_sink = logging.StreamHandler(stream if stream is not None else sys.stderr)
    stderr_sink.setLevel(level)
    sinks: list[logging.Handler] = [stderr_sink]

    log_path: Path | None = None
    log_dir = str(cfg.get("log_dir") or "")
    if log_dir:
        log_path = Path(log_dir) / run_id / LOG_FILENAME
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_sink = logging.FileHandler(log_path, encoding="utf-8")
        file_sink.setLevel(logging.DEBUG)
        sinks.append(file_sink)
    for sink in sinks:
        sink.setFormatter(formatter)

    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(logging.DEBUG if log_path is not None else level)
    logger.propagate = False
    for stale in list(logger.handlers):
        logger.removeHandler(stale)
        stale.close()

    log_queue: queue.Queue[Any] = queue.Queue(maxsize=queue_size)
    queue_handler = _DroppingQueueHandler(log_queue)
    listener = logging.handlers.QueueListener(log_queue, *sinks, respect_handler_level=True)
    listener.start()
    logger.addHandler(queue_handler)
    configure_structlog()

    handle = LoggingHandle(
        run_id=run_id,
        log_path=log_path,
        _logger=logger,
        _queue_handler=queue_handler,
        _listener=listener,
        _sinks=tuple(sinks),
    )
    with _active_lock:
        _active = handle
    return handle


def configure_structlog() -> None:
    """Send ``structlog`` events through stdlib logging as message plus extra fields."""

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.processors.format_exc_info,
            structlog.stdlib.render_to_log_kwargs,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )


def get_active_logging_handle() -> LoggingHandle | None:
    with _active_lock:
        return _active


def shutdown_logging(handle: LoggingHandle | None = None) -> None:
    """Drain and close ``handle``, or the active pipeline when none is given."""

    global _active

    with _active_lock:
        target = handle if handle is not None else _active
        if target is _active:
            _active = None
    if target is not None:
        target.shutdown()


def _parse_level(raw: object) -> int:
    if isinstance(raw, int):
        return raw
    level = logging.getLevelName(str(raw).strip().upper())
    if not isinstance(level, int):
        raise ValueError(f"unsupported logging level {raw!r}")
    return level


atexit.register(shutdown_logging)


__all__ = [
    "LOG_FILENAME",
    "REDACTED",
    "JsonLineFormatter",
    "LoggingHandle",
    "Redactor",
    "configure_structlog",
    "correlation_scope",
    "default_log_redactor",
    "get_active_logging_handle",
    "get_correlation_context",
    "setup_logging",
    "shutdown_logging",
]
