"""
agent-nightlies: runtime config loader.

Purpose
- Build the effective config from four layers, lowest first: built-in
  defaults, ``nightlies.toml``, ``NIGHTLIES_*`` environment variables and
  CLI flags.

Every scalar leaf of the config has exactly one environment variable, named
after its dotted path (``cache.staleness_minutes`` is
``NIGHTLIES_CACHE_STALENESS_MINUTES``); the leaf's default type decides how
the raw string is coerced.
"""

from __future__ import annotations

import json
import os
import tomllib
from collections.abc import Callable, Iterator, Mapping
from pathlib import Path
from typing import Any, Final

from agent_nightlies.config.schema import (
    PATH_FIELDS,
    assert_valid_config,
    default_config,
    merge_config,
    redact_config,
)

DEFAULT_CONFIG_FILE: Final[str] = "nightlies.toml"
ENV_PREFIX: Final[str] = "NIGHTLIES_"

_TRUTHY: Final[frozenset[str]] = frozenset({"1", "true", "t", "yes", "y", "on"})
_FALSY: Final[frozenset[str]] = frozenset({"0", "false", "f", "no", "n", "off"})

Dotted = tuple[str, ...]


class ConfigLoadError(ValueError):
    """Config file unreadable, or an override that cannot be coerced."""


def load_config(
    config_path: str | Path | None = None,
    *,
    cli_overrides: Mapping[str, object] | None = None,
    environ: Mapping[str, str] | None = None,
) -> dict[str, Any]:
    """Return the validated effective config with paths made absolute.

    ``cli_overrides`` maps dotted keys (``"registry.num_pages"``) to values;
    ``None`` values mean "flag not given". An explicit ``config_path`` must
    exist, while ``./nightlies.toml`` is read only when present.
    """

    if config_path is None:
        source = Path.cwd().joinpath(DEFAULT_CONFIG_FILE).resolve()
    else:
        source = Path(config_path).expanduser().resolve()

    from_file = assert_valid_config(
        merge_config(default_config(), _read_toml(source, must_exist=config_path is not None))
    )
    env = os.environ if environ is None else environ
    layered = merge_config(from_file, _env_layer(from_file, env))
    layered = merge_config(layered, _cli_layer(cli_overrides or {}))

    return normalize_paths(assert_valid_config(layered), base_dir=source.parent)


def normalize_paths(config: Mapping[str, object], *, base_dir: Path) -> dict[str, Any]:
    """Copy of ``config`` with every non-empty path field absolute, anchored at ``base_dir``."""

    result = merge_config({}, config)
    for dotted in PATH_FIELDS:
        raw = _lookup(result, dotted)
        if isinstance(raw, str) and raw:
            _assign(result, dotted, _absolute_posix(raw, base_dir))
    return result


def dump_effective_config(config: Mapping[str, object]) -> str:
    return json.dumps(
        redact_config(config), sort_keys=True, separators=(",", ":"), ensure_ascii=False
    )


def _read_toml(path: Path, *, must_exist: bool) -> dict[str, Any]:
    if not path.is_file():
        if must_exist:
            raise ConfigLoadError(f"config file not found: {path}")
        return {}
    try:
        return tomllib.loads(path.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as exc:
        raise ConfigLoadError(f"invalid TOML in {path}: {exc}") from exc
    except (OSError, UnicodeDecodeError) as exc:
        raise ConfigLoadError(f"unable to read config file {path}: {exc}") from exc


def _env_layer(config: Mapping[str, object], environ: Mapping[str, str]) -> dict[str, Any]:
    layer: dict[str, Any] = {}
    for dotted, current in _leaves(config):
        if dotted == ("meta", "schema_version"):
            continue
        coerce = _COERCERS.get(type(current))
        if coerce is None:
            continue
        env_name = ENV_PREFIX + "_".join(dotted).upper()
        raw = environ.get(env_name)
        if raw is not None:
            _assign(layer, dotted, coerce(raw.strip(), f"{env_name} -> {'.'.join(dotted)}"))
    return layer


def _cli_layer(overrides: Mapping[str, object]) -> dict[str, Any]:
    layer: dict[str, Any] = {}
    for key, value in sorted(overrides.items()):
        if value is None:
            continue
        dotted = tuple(filter(None, key.split(".")))
        if len(dotted) < 2:
            raise ConfigLoadError(f"invalid CLI override key {key!r}")
        _assign(layer, dotted, value)
    return layer


def _leaves(payload: Mapping[str, object], prefix: Dotted = ()) -> Iterator[tuple[Dotted, object]]:
    for key in sorted(payload):
        value = payload[key]
        if isinstance(value, Mapping):
            yield from _leaves(value, (*prefix, key))
        else:
            yield (*prefix, key), value


def _as_int(raw: str, where: str) -> int:
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigLoadError(f"{where} must be an integer") from exc


def _as_float(raw: str, where: str) -> float:
    try:
        return float(raw)
    except ValueError as exc:
        raise ConfigLoadError(f"{where} must be a number") from exc


def _as_bool(raw: str, where: str) -> bool:
    token = raw.lower()
    if token in _TRUTHY or token in _FALSY:
        return token in _TRUTHY
    raise ConfigLoadError(f"{where} must be a boolean (true/false/1/0/yes/no/on/off)")


def _as_str(raw: str, where: str) -> str:
    return raw


# Keyed on the exact type of the default so that bool never falls through to int.
_COERCERS: Final[dict[type, Callable[[str, str], object]]] = {
    bool: _as_bool,
    int: _as_int,
    float: _as_float,
    str: _as_str,
}


def _lookup(payload: Mapping[str, object], dotted: Dotted) -> object | None:
    node: object = payload
    for part in dotted:
        if not isinstance(node, Mapping):
            return None
        node = node.get(part)
    return node


def _assign(payload: dict[str, Any], dotted: Dotted, value: object) -> None:
    *parents, leaf = dotted
    node = payload
    for part in parents:
        child = node.get(part)
        if not isinstance(child, dict):
            child = node[part] = {}
        node = child
    node[leaf] = value


def _absolute_posix(raw: str, base_dir: Path) -> str:
    candidate = Path(os.path.expandvars(raw)).expanduser()
    if not candidate.is_absolute():
        candidate = base_dir / candidate
    return Path(os.path.normpath(candidate)).as_posix()


__all__ = [
    "DEFAULT_CONFIG_FILE",
    "ENV_PREFIX",
    "ConfigLoadError",
    "dump_effective_config",
    "load_config",
    "normalize_paths",
]
