"""Process entrypoint for ``agent-nightlies`` and ``python -m agent_nightlies``.

Whatever escapes :func:`agent_nightlies.ui.cli.run_cli` is mapped onto the
exit-code contract here: config trouble is 2, data or git trouble is 3 and
anything unexpected is 4 with a traceback.
"""

from __future__ import annotations

import sys
import traceback
from enum import IntEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator, Sequence


class ExitCode(IntEnum):
    SUCCESS = 0
    NEGATIVE_RESULT = 1
    CONFIG_ERROR = 2
    DATA_ERROR = 3
    INTERNAL_ERROR = 4


def cli_entrypoint(argv: Sequence[str] | None = None) -> int:
    try:
        from agent_nightlies.ui.cli import run_cli

        return _as_exit_code(run_cli(argv))
    except SystemExit as exc:
        return _as_exit_code(exc.code)
    except KeyboardInterrupt:
        _stderr("interrupted")
        return ExitCode.INTERNAL_ERROR.value
    except BaseException as exc:  # noqa: BLE001 - last line before the interpreter.
        code = classify_failure(exc)
        if code is ExitCode.INTERNAL_ERROR:
            traceback.print_exception(type(exc), exc, exc.__traceback__, file=sys.stderr)
        else:
            _stderr(f"error: {str(exc).strip() or type(exc).__name__}")
        return code.value


def classify_failure(exc: BaseException) -> ExitCode:
    """Exit code for ``exc``, judged by the first recognised error in its cause chain."""

    from agent_nightlies.config.loader import ConfigLoadError
    from agent_nightlies.config.schema import ConfigValidationError
    from agent_nightlies.domain.errors import NightlyError
    from agent_nightlies.git.errors import GitError
    from agent_nightlies.persistence.tag_cache import TagCacheError
    from agent_nightlies.registry.base import RegistryError

    routes: tuple[tuple[tuple[type[BaseException], ...], ExitCode], ...] = (
        ((ConfigLoadError, ConfigValidationError), ExitCode.CONFIG_ERROR),
        ((NightlyError, GitError, RegistryError, TagCacheError), ExitCode.DATA_ERROR),
        (
            (FileNotFoundError, NotADirectoryError, PermissionError, ValueError),
            ExitCode.CONFIG_ERROR,
        ),
    )
    for link in _cause_chain(exc):
        for types, code in routes:
            if isinstance(link, types):
                return code
    return ExitCode.INTERNAL_ERROR


def _cause_chain(exc: BaseException) -> Iterator[BaseException]:
    seen: set[int] = set()
    link: BaseException | None = exc
    while link is not None and id(link) not in seen:
        seen.add(id(link))
        yield link
        if link.__cause__ is not None:
            link = link.__cause__
        elif not link.__suppress_context__:
            link = link.__context__
        else:
            link = None


def _as_exit_code(raw: object) -> int:
    if raw is None:
        return ExitCode.SUCCESS.value
    if isinstance(raw, int) and raw in {code.value for code in ExitCode}:
        return raw
    if isinstance(raw, str) and raw.strip():
        _stderr(raw.strip())
    return ExitCode.INTERNAL_ERROR.value


def _stderr(message: str) -> None:
    sys.stderr.write(message.rstrip("\n") + "\n")


__all__ = ["ExitCode", "classify_failure", "cli_entrypoint"]
