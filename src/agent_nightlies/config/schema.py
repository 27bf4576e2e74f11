"""
agent-nightlies: configuration schema and validation.

Purpose
- Own the built-in defaults and the strict shape of ``nightlies.toml``.

Each section is a table of field checks. A check returns the normalized
value or raises ``_Invalid`` with the message reported against the field's
dotted path; all issues are collected before anything is rejected. Unknown
keys are errors, and keys that look like secrets get a pointer to
``registry.token_env`` instead.
"""

from __future__ import annotations

import copy
import math
import re
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Final, TypedDict

from agent_nightlies.constants import (
    CONFIG_SCHEMA_VERSION,
    DEFAULT_BRANCH,
    DEFAULT_CACHE_PATH,
    DEFAULT_DIFF_MAX_COMMITS,
    DEFAULT_GIT_BRANCH_REF,
    DEFAULT_GIT_REPO_PATH,
    DEFAULT_MAX_GRAPH_COMMITS,
    DEFAULT_NUM_REGISTRY_PAGES,
    DEFAULT_PAGE_SIZE,
    DEFAULT_QUERY_WINDOW_DAYS,
    DEFAULT_REGISTRY_BASE_URL,
    DEFAULT_REGISTRY_TIMEOUT_SECONDS,
    DEFAULT_REPOSITORY,
    DEFAULT_SOURCE_URL_TEMPLATE,
    DEFAULT_STALENESS_WINDOW,
    DEFAULT_SUFFIX_FILTER,
)

ConfigSchemaVersion: Final[int] = CONFIG_SCHEMA_VERSION
LOG_LEVELS: Final[tuple[str, ...]] = ("DEBUG", "INFO", "WARNING", "ERROR")
REDACTED_VALUE: Final[str] = "<redacted>"

_ENV_VAR = re.compile(r"[A-Z_][A-Z0-9_]*")
_REPOSITORY = re.compile(r"[a-z0-9][a-z0-9._-]*/[a-z0-9][a-z0-9._-]*")
_BRANCH = re.compile(r"[A-Za-z0-9._-]+")
_WORD_BOUNDARY = re.compile(r"([a-z0-9])([A-Z])")
_SEPARATORS = re.compile(r"[^a-z0-9]+")

# Whole words and substrings that mark a config key as holding a secret.
_SECRET_WORDS: Final[frozenset[str]] = frozenset(
    {"apikey", "auth", "credential", "credentials", "passwd", "password", "secret", "token"}
)
_SECRET_FRAGMENTS: Final[tuple[str, ...]] = (
    "access_token",
    "api_key",
    "client_secret",
    "password",
    "secret",
)

# Config paths normalized relative to the config file location.
PATH_FIELDS: Final[tuple[tuple[str, ...], ...]] = (
    ("cache", "path"),
    ("git", "repo_path"),
    ("observability", "log_dir"),
)


class MetaConfig(TypedDict):
    schema_version: int


class RegistryConfig(TypedDict):
    base_url: str
    repository: str
    page_size: int
    num_pages: int
    timeout_seconds: float
    token_env: str


class TagsConfig(TypedDict):
    branch: str
    suffix: str
    source_url_template: str


class CacheConfig(TypedDict):
    path: str
    staleness_minutes: int


class GitConfig(TypedDict):
    repo_path: str
    branch_ref: str
    max_commits: int
    max_walk_depth: int


class QueryConfig(TypedDict):
    include_weekends: bool
    default_window_days: int
    diff_max_commits: int


class ObservabilityConfig(TypedDict):
    log_level: str
    log_dir: str
    redact_secrets: bool


class NightliesConfig(TypedDict):
    meta: MetaConfig
    registry: RegistryConfig
    tags: TagsConfig
    cache: CacheConfig
    git: GitConfig
    query: QueryConfig
    observability: ObservabilityConfig


DEFAULT_CONFIG: Final[NightliesConfig] = {
    "meta": {"schema_version": ConfigSchemaVersion},
    "registry": {
        "base_url": DEFAULT_REGISTRY_BASE_URL,
        "repository": DEFAULT_REPOSITORY,
        "page_size": DEFAULT_PAGE_SIZE,
        "num_pages": DEFAULT_NUM_REGISTRY_PAGES,
        "timeout_seconds": DEFAULT_REGISTRY_TIMEOUT_SECONDS,
        "token_env": "",
    },
    "tags": {
        "branch": DEFAULT_BRANCH,
        "suffix": DEFAULT_SUFFIX_FILTER,
        "source_url_template": DEFAULT_SOURCE_URL_TEMPLATE,
    },
    "cache": {
        "path": DEFAULT_CACHE_PATH,
        "staleness_minutes": int(DEFAULT_STALENESS_WINDOW.total_seconds() // 60),
    },
    "git": {
        "repo_path": DEFAULT_GIT_REPO_PATH,
        "branch_ref": DEFAULT_GIT_BRANCH_REF,
        "max_commits": DEFAULT_MAX_GRAPH_COMMITS,
        "max_walk_depth": 0,
    },
    "query": {
        "include_weekends": False,
        "default_window_days": DEFAULT_QUERY_WINDOW_DAYS,
        "diff_max_commits": DEFAULT_DIFF_MAX_COMMITS,
    },
    "observability": {
        "log_level": "WARNING",
        "log_dir": "",
        "redact_secrets": True,
    },
}


@dataclass(frozen=True, slots=True)
class ConfigValidationIssue:
    path: str
    message: str


@dataclass(frozen=True, slots=True)
class ConfigValidationResult:
    config: dict[str, Any] | None
    issues: tuple[ConfigValidationIssue, ...]

    @property
    def is_valid(self) -> bool:
        return not self.issues and self.config is not None


class ConfigValidationError(ValueError):
    """Config failed validation; ``issues`` lists every offending field."""

    def __init__(self, issues: Sequence[ConfigValidationIssue]) -> None:
        self.issues = tuple(issues)
        lines = [f"- {issue.path}: {issue.message}" for issue in self.issues]
        super().__init__("invalid config:\n" + ("\n".join(lines) or "unknown validation failure"))


class _Invalid(Exception):
    pass


Check = Callable[[object], Any]


def default_config() -> NightliesConfig:
    return copy.deepcopy(DEFAULT_CONFIG)


def migration_guidance(found_version: int) -> str:
    """Human hint for a ``meta.schema_version`` that does not match this release."""

    if found_version == ConfigSchemaVersion:
        return "schema version is current"
    relation, remedy = (
        ("older", "upgrade nightlies.toml to the current schema")
        if found_version < ConfigSchemaVersion
        else ("newer", "upgrade agent-nightlies")
    )
    return (
        f"schema version {found_version} is {relation} than supported "
        f"{ConfigSchemaVersion}; {remedy}"
    )


def merge_config(base: Mapping[str, object], overlay: Mapping[str, object]) -> dict[str, Any]:
    """Deep-merge ``overlay`` onto a copy of ``base``; neither input is mutated."""

    merged: dict[str, Any] = {key: copy.deepcopy(base[key]) for key in sorted(base)}
    for key in sorted(overlay):
        value = overlay[key]
        if isinstance(value, Mapping):
            current = merged.get(key)
            merged[key] = merge_config(current if isinstance(current, Mapping) else {}, value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def validate_config(config: object) -> ConfigValidationResult:
    issues: list[ConfigValidationIssue] = []

    def report(path: str, message: str) -> None:
        issues.append(ConfigValidationIssue(path=path, message=message))

    validated: dict[str, Any] = {}
    root = _object_or_report(config, "<root>", report)
    if root is not None:
        _check_keys(root, _SECTIONS, "", report)
        for name in sorted(_SECTIONS):
            if name not in root:
                continue
            section = _object_or_report(root[name], name, report)
            if section is not None:
                validated[name] = _validate_section(section, _SECTIONS[name], name, report)

    if issues:
        return ConfigValidationResult(config=None, issues=tuple(issues))
    return ConfigValidationResult(config=validated, issues=())


def assert_valid_config(config: object) -> dict[str, Any]:
    """Validated, normalized copy of ``config``; raises ``ConfigValidationError``."""

    result = validate_config(config)
    if result.config is None:
        raise ConfigValidationError(result.issues)
    return result.config


def redact_config(config: object) -> dict[str, Any]:
    """Copy of ``config`` safe for logs and ``--show-config``."""

    if not isinstance(config, Mapping):
        return {}
    return _redact(config)


# ---------------------------------------------------------------------------
# Field checks
# ---------------------------------------------------------------------------


def _type_error(expected: str, value: object) -> _Invalid:
    return _Invalid(f"expected {expected}, got {type(value).__name__}")


def _text(value: object, *, allow_empty: bool = False) -> str:
    if not isinstance(value, str):
        raise _type_error("string", value)
    stripped = value.strip()
    if not stripped and not allow_empty:
        raise _Invalid("must not be empty")
    return stripped


def _optional_text(value: object) -> str:
    return _text(value, allow_empty=True)


def _integer(minimum: int | None = None, maximum: int | None = None) -> Check:
    def check(value: object) -> int:
        if isinstance(value, bool) or not isinstance(value, int):
            raise _type_error("integer", value)
        if minimum is not None and value < minimum:
            raise _Invalid(f"must be >= {minimum}")
        if maximum is not None and value > maximum:
            raise _Invalid(f"must be <= {maximum}")
        return value

    return check


def _number(minimum: float) -> Check:
    def check(value: object) -> float:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise _type_error("number", value)
        number = float(value)
        if not math.isfinite(number):
            raise _Invalid("must be finite")
        if number < minimum:
            raise _Invalid(f"must be >= {minimum}")
        return number

    return check


def _boolean(value: object) -> bool:
    if not isinstance(value, bool):
        raise _type_error("boolean", value)
    return value


def _matching(pattern: re.Pattern[str], hint: str, *, allow_empty: bool = False) -> Check:
    def check(value: object) -> str:
        text = _text(value, allow_empty=allow_empty)
        if text and not pattern.fullmatch(text):
            raise _Invalid(hint)
        return text

    return check


def _http_url(value: object) -> str:
    url = _text(value)
    if not url.startswith(("https://", "http://")):
        raise _Invalid("must be an http(s) URL")
    return url.rstrip("/")


def _tag_suffix(value: object) -> str:
    suffix = _optional_text(value)
    if suffix and not suffix.startswith("-"):
        raise _Invalid("must be empty or start with '-'")
    return suffix


def _sha_template(value: object) -> str:
    template = _text(value)
    if "{sha}" not in template:
        raise _Invalid("must contain the '{sha}' placeholder")
    return template


def _git_ref(value: object) -> str:
    ref = _text(value)
    if ref.startswith("-"):
        raise _Invalid("must not start with '-'")
    return ref


def _filesystem_path(value: object) -> str:
    text = _text(value)
    if "\x00" in text:
        raise _Invalid("must not contain NUL bytes")
    return text


def _log_level(value: object) -> str:
    level = _text(value).upper()
    if level not in LOG_LEVELS:
        raise _Invalid(f"invalid value {level!r}; expected one of: {', '.join(sorted(LOG_LEVELS))}")
    return level


def _schema_version(value: object) -> int:
    version = _integer(minimum=1)(value)
    if version != ConfigSchemaVersion:
        raise _Invalid(migration_guidance(version))
    return version


_SECTIONS: Final[dict[str, dict[str, Check]]] = {
    "meta": {"schema_version": _schema_version},
    "registry": {
        "base_url": _http_url,
        "repository": _matching(_REPOSITORY, "must look like 'namespace/name'"),
        "page_size": _integer(minimum=1, maximum=100),
        "num_pages": _integer(minimum=1),
        "timeout_seconds": _number(minimum=0.1),
        "token_env": _matching(
            _ENV_VAR, "must be an env var name (example: DOCKERHUB_TOKEN)", allow_empty=True
        ),
    },
    "tags": {
        "branch": _matching(_BRANCH, "must contain only letters, digits, '.', '_' or '-'"),
        "suffix": _tag_suffix,
        "source_url_template": _sha_template,
    },
    "cache": {
        "path": _filesystem_path,
        "staleness_minutes": _integer(minimum=0),
    },
    "git": {
        "repo_path": _filesystem_path,
        "branch_ref": _git_ref,
        "max_commits": _integer(minimum=1),
        "max_walk_depth": _integer(minimum=0),
    },
    "query": {
        "include_weekends": _boolean,
        "default_window_days": _integer(minimum=1),
        "diff_max_commits": _integer(minimum=1),
    },
    "observability": {
        "log_level": _log_level,
        "log_dir": _optional_text,
        "redact_secrets": _boolean,
    },
}


# ---------------------------------------------------------------------------
# Structure
# ---------------------------------------------------------------------------

Reporter = Callable[[str, str], None]


def _dotted(prefix: str, key: str) -> str:
    return f"{prefix}.{key}" if prefix else key


def _object_or_report(value: object, path: str, report: Reporter) -> dict[str, object] | None:
    if not isinstance(value, Mapping):
        report(path, f"expected object, got {type(value).__name__}")
        return None
    result: dict[str, object] = {}
    for key, item in value.items():
        if isinstance(key, str):
            result[key] = item
        else:
            report(path, f"object key must be string, got {type(key).__name__}")
    return result


def _check_keys(
    payload: Mapping[str, object], known: Mapping[str, object], prefix: str, report: Reporter
) -> None:
    for key in sorted(set(payload) | set(known)):
        if key not in known:
            if _is_secret_key(key):
                report(
                    _dotted(prefix, key),
                    "embedded secret values are forbidden; "
                    "use registry.token_env with an env var name",
                )
            else:
                report(_dotted(prefix, key), "unknown field")
        elif key not in payload:
            report(_dotted(prefix, key), "missing required field")


def _validate_section(
    payload: Mapping[str, object], checks: Mapping[str, Check], name: str, report: Reporter
) -> dict[str, Any]:
    _check_keys(payload, checks, name, report)
    section: dict[str, Any] = {}
    for key in sorted(checks.keys() & payload.keys()):
        try:
            section[key] = checks[key](payload[key])
        except _Invalid as exc:
            report(_dotted(name, key), str(exc))
    return section


def _is_secret_key(key: str) -> bool:
    words = _SEPARATORS.sub("_", _WORD_BOUNDARY.sub(r"\1_\2", key.strip()).lower()).strip("_")
    if words.endswith("_env"):
        return False
    if any(fragment in words for fragment in _SECRET_FRAGMENTS):
        return True
    return not _SECRET_WORDS.isdisjoint(words.split("_"))


def _redact(value: object) -> Any:
    if isinstance(value, Mapping):
        return {
            key: REDACTED_VALUE if _is_secret_key(str(key)) else _redact(value[key])
            for key in sorted(value)
        }
    if isinstance(value, (list, tuple)):
        return [_redact(item) for item in value]
    return value


__all__ = [
    "DEFAULT_CONFIG",
    "LOG_LEVELS",
    "PATH_FIELDS",
    "REDACTED_VALUE",
    "CacheConfig",
    "ConfigSchemaVersion",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "ConfigValidationResult",
    "GitConfig",
    "NightliesConfig",
    "ObservabilityConfig",
    "QueryConfig",
    "RegistryConfig",
    "TagsConfig",
    "assert_valid_config",
    "default_config",
    "merge_config",
    "migration_guidance",
    "redact_config",
    "validate_config",
]
