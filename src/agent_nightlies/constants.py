"""Stable constants shared across the nightly engine, collaborators and CLI."""

from __future__ import annotations

import tempfile
from datetime import timedelta
from pathlib import Path
from typing import Final

# Registry defaults (Docker Hub v2 API).
DEFAULT_REGISTRY_BASE_URL: Final[str] = "https://hub.docker.com/v2/repositories"
DEFAULT_REPOSITORY: Final[str] = "datadog/agent-dev"
DEFAULT_PAGE_SIZE: Final[int] = 100
DEFAULT_NUM_REGISTRY_PAGES: Final[int] = 3
DEFAULT_REGISTRY_TIMEOUT_SECONDS: Final[float] = 30.0

# Tag shapes.
NIGHTLY_PREFIX: Final[str] = "nightly"
DEFAULT_BRANCH: Final[str] = "main"
DEFAULT_SUFFIX_FILTER: Final[str] = "-py3"
# Tokens that mark an image variant rather than part of a branch name.
VARIANT_TOKENS: Final[frozenset[str]] = frozenset({"fips", "jmx", "py2", "py3", "servercore"})
MIN_SHORT_SHA_LENGTH: Final[int] = 7
MAX_SHA_LENGTH: Final[int] = 40
DEFAULT_SOURCE_URL_TEMPLATE: Final[str] = "https://github.com/DataDog/datadog-agent/tree/{sha}"

# Cache and staleness.
DEFAULT_CACHE_PATH: Final[str] = (
    Path(tempfile.gettempdir()) / "agent_nightlies.sqlite3"
).as_posix()
DEFAULT_STALENESS_WINDOW: Final[timedelta] = timedelta(minutes=60)
TAG_CACHE_SCHEMA_VERSION: Final[int] = 1

# Commit graph.
DEFAULT_GIT_REPO_PATH: Final[str] = "~/go/src/github.com/DataDog/datadog-agent"
DEFAULT_GIT_BRANCH_REF: Final[str] = "origin/main"
DEFAULT_MAX_GRAPH_COMMITS: Final[int] = 20_000

# Queries.
DEFAULT_QUERY_WINDOW_DAYS: Final[int] = 7
DEFAULT_DIFF_MAX_COMMITS: Final[int] = 25

CONFIG_SCHEMA_VERSION: Final[int] = 1

__all__ = [
    "CONFIG_SCHEMA_VERSION",
    "DEFAULT_BRANCH",
    "DEFAULT_CACHE_PATH",
    "DEFAULT_DIFF_MAX_COMMITS",
    "DEFAULT_GIT_BRANCH_REF",
    "DEFAULT_GIT_REPO_PATH",
    "DEFAULT_MAX_GRAPH_COMMITS",
    "DEFAULT_NUM_REGISTRY_PAGES",
    "DEFAULT_PAGE_SIZE",
    "DEFAULT_QUERY_WINDOW_DAYS",
    "DEFAULT_REGISTRY_BASE_URL",
    "DEFAULT_REGISTRY_TIMEOUT_SECONDS",
    "DEFAULT_REPOSITORY",
    "DEFAULT_SOURCE_URL_TEMPLATE",
    "DEFAULT_STALENESS_WINDOW",
    "DEFAULT_SUFFIX_FILTER",
    "MAX_SHA_LENGTH",
    "MIN_SHORT_SHA_LENGTH",
    "NIGHTLY_PREFIX",
    "TAG_CACHE_SCHEMA_VERSION",
    "VARIANT_TOKENS",
]
