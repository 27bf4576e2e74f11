"""Docker Hub v2 tag listing over ``requests``.

The first page is ``{base_url}/{repository}/tags?page_size=N&name=<prefix>``;
every later page is the absolute ``next`` URL returned by the previous one.
"""

from __future__ import annotations

import logging
import os
from datetime import datetime
from typing import TYPE_CHECKING, Any, Final

import requests

from agent_nightlies.constants import (
    DEFAULT_BRANCH,
    DEFAULT_PAGE_SIZE,
    DEFAULT_REGISTRY_BASE_URL,
    DEFAULT_REGISTRY_TIMEOUT_SECONDS,
    DEFAULT_REPOSITORY,
    NIGHTLY_PREFIX,
)
from agent_nightlies.domain.models import RawTag
from agent_nightlies.registry.base import RegistryTransportError, TagPage

if TYPE_CHECKING:
    from collections.abc import Mapping

logger = logging.getLogger(__name__)

_USER_AGENT: Final[str] = "agent-nightlies"
_PUSHED_FIELDS: Final[tuple[str, ...]] = ("tag_last_pushed", "last_updated")


def _parse_timestamp(value: object) -> datetime | None:
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        return datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return None


def _entry_digest(entry: Mapping[str, Any]) -> str | None:
    digest = entry.get("digest")
    if isinstance(digest, str) and digest:
        return digest
    images = entry.get("images")
    if isinstance(images, list):
        for image in images:
            if isinstance(image, dict):
                candidate = image.get("digest")
                if isinstance(candidate, str) and candidate:
                    return candidate
    return None


def parse_tag_entry(entry: object, *, include_digest: bool) -> RawTag | None:
    """Turn one ``results`` entry into a :class:`RawTag`; ``None`` when malformed."""

    if not isinstance(entry, dict):
        return None
    name = entry.get("name")
    if not isinstance(name, str) or not name:
        return None
    pushed: datetime | None = None
    for field_name in _PUSHED_FIELDS:
        pushed = _parse_timestamp(entry.get(field_name))
        if pushed is not None:
            break
    if pushed is None:
        return None
    return RawTag(
        name=name,
        last_pushed=pushed,
        digest=_entry_digest(entry) if include_digest else None,
    )


class DockerHubRegistry:
    """:class:`~agent_nightlies.registry.base.TagRegistry` backed by Docker Hub."""

    def __init__(
        self,
        *,
        base_url: str = DEFAULT_REGISTRY_BASE_URL,
        repository: str = DEFAULT_REPOSITORY,
        branch: str = DEFAULT_BRANCH,
        page_size: int = DEFAULT_PAGE_SIZE,
        timeout_seconds: float = DEFAULT_REGISTRY_TIMEOUT_SECONDS,
        token_env: str = "",
        session: requests.Session | None = None,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        if page_size <= 0:
            raise ValueError("page_size must be > 0")
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")
        self.base_url = base_url.rstrip("/")
        self.repository = repository.strip("/")
        self.branch = branch
        self.page_size = page_size
        self.timeout_seconds = timeout_seconds
        self._session = session if session is not None else requests.Session()
        self._headers = {"Accept": "application/json", "User-Agent": _USER_AGENT}
        token = _resolve_token(token_env, os.environ if environ is None else environ)
        if token:
            self._headers["Authorization"] = f"Bearer {token}"

    @property
    def tags_url(self) -> str:
        return f"{self.base_url}/{self.repository}/tags"

    def first_page_params(self) -> dict[str, str | int]:
        return {"page_size": self.page_size, "name": f"{NIGHTLY_PREFIX}-{self.branch}-"}

    def fetch_tag_page(self, cursor: str | None, *, include_digests: bool = False) -> TagPage:
        if cursor is None:
            payload = self._get_json(self.tags_url, params=self.first_page_params())
        else:
            payload = self._get_json(cursor)

        results = payload.get("results")
        if not isinstance(results, list):
            raise RegistryTransportError(
                "registry response is missing a 'results' list", url=cursor or self.tags_url
            )

        tags: list[RawTag] = []
        for entry in results:
            tag = parse_tag_entry(entry, include_digest=include_digests)
            if tag is None:
                logger.warning(
                    "skipping malformed registry entry", extra={"entry": repr(entry)[:200]}
                )
                continue
            if include_digests and tag.digest is None:
                tag = RawTag(
                    name=tag.name,
                    last_pushed=tag.last_pushed,
                    digest=self._digest_or_none(tag.name),
                )
            tags.append(tag)

        next_cursor = payload.get("next")
        if not isinstance(next_cursor, str) or not next_cursor:
            next_cursor = None
        return TagPage(tags=tuple(tags), next_cursor=next_cursor)

    def fetch_digest(self, tag_name: str) -> str | None:
        """Per-tag detail call for tags listed without a digest."""

        payload = self._get_json(f"{self.tags_url}/{tag_name}")
        return _entry_digest(payload)

    def _digest_or_none(self, tag_name: str) -> str | None:
        try:
            return self.fetch_digest(tag_name)
        except RegistryTransportError as exc:
            logger.warning(
                "digest lookup failed; listing tag without digest",
                extra={"tag_name": tag_name, "error": str(exc)},
            )
            return None

    def close(self) -> None:
        self._session.close()

    def _get_json(
        self, url: str, *, params: Mapping[str, str | int] | None = None
    ) -> dict[str, Any]:
        try:
            response = self._session.get(
                url,
                params=dict(params) if params is not None else None,
                headers=self._headers,
                timeout=self.timeout_seconds,
            )
        except requests.RequestException as exc:
            raise RegistryTransportError(f"registry request failed: {exc}", url=url) from exc

        if response.status_code >= 400:
            raise RegistryTransportError(
                f"registry returned HTTP {response.status_code} for {url}",
                url=url,
                status_code=response.status_code,
            )
        try:
            payload = response.json()
        except ValueError as exc:
            raise RegistryTransportError(
                f"registry returned invalid JSON for {url}", url=url
            ) from exc
        if not isinstance(payload, dict):
            raise RegistryTransportError(
                f"registry returned a non-object payload for {url}", url=url
            )
        return payload


def _resolve_token(token_env: str, environ: Mapping[str, str]) -> str | None:
    if not token_env:
        return None
    value = environ.get(token_env, "").strip()
    return value or None


__all__ = ["DockerHubRegistry", "parse_tag_entry"]
