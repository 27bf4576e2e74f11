"""Registry transport contract consumed by the Fetch Coordinator."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from agent_nightlies.domain.models import RawTag


class RegistryError(RuntimeError):
    """Base error for registry transport failures."""


class RegistryTransportError(RegistryError):
    """A page could not be fetched or decoded.

    Page-level and recoverable: the coordinator keeps already merged pages.
    """

    def __init__(
        self, message: str, *, url: str | None = None, status_code: int | None = None
    ) -> None:
        self.url = url
        self.status_code = status_code
        super().__init__(message)


@dataclass(frozen=True, slots=True)
class TagPage:
    """One page of registry tags; ``next_cursor`` is ``None`` on the last page."""

    tags: tuple[RawTag, ...]
    next_cursor: str | None = None


class TagRegistry(Protocol):
    """Paginated tag listing for one repository."""

    def fetch_tag_page(self, cursor: str | None, *, include_digests: bool = False) -> TagPage: ...


__all__ = ["RegistryError", "RegistryTransportError", "TagPage", "TagRegistry"]
