"""
Fetch Coordinator: decides whether to hit the registry and drives pagination.

Each page is normalized and merged into the store as soon as it arrives, so
a transport failure on page N keeps pages 1..N-1 queryable. ``fetched_at``
advances only after a complete sync. Decisions are logged through
``structlog`` as machine-parseable events.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

import structlog

from agent_nightlies.constants import DEFAULT_NUM_REGISTRY_PAGES, DEFAULT_STALENESS_WINDOW
from agent_nightlies.domain.errors import NoDataAvailableError
from agent_nightlies.domain.models import UTC, SyncOutcome
from agent_nightlies.engine.normalizer import TagNormalizer
from agent_nightlies.persistence.tag_cache import TagCacheError
from agent_nightlies.registry.base import RegistryTransportError

if TYPE_CHECKING:
    from collections.abc import Callable

    from agent_nightlies.engine.tag_store import TagStore
    from agent_nightlies.persistence.tag_cache import TagCache
    from agent_nightlies.registry.base import TagRegistry
    from agent_nightlies.utils.concurrency import CancellationToken


@dataclass(frozen=True, slots=True)
class FetchPolicy:
    no_fetch: bool = False
    force_fetch: bool = False
    staleness_window: timedelta = DEFAULT_STALENESS_WINDOW
    num_registry_pages: int = DEFAULT_NUM_REGISTRY_PAGES
    include_digests: bool = False
    stop_at_cached_frontier: bool = True

    def __post_init__(self) -> None:
        if self.no_fetch and self.force_fetch:
            raise ValueError("no_fetch and force_fetch are mutually exclusive")
        if self.num_registry_pages <= 0:
            raise ValueError("num_registry_pages must be > 0")
        if self.staleness_window < timedelta(0):
            raise ValueError("staleness_window must be >= 0")


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)


class FetchCoordinator:
    """Keeps a :class:`TagStore` in sync with the registry."""

    def __init__(
        self,
        store: TagStore,
        registry: TagRegistry,
        *,
        cache: TagCache | None = None,
        normalizer: TagNormalizer | None = None,
        clock: Callable[[], datetime] = _utc_now,
        logger: Any | None = None,
    ) -> None:
        self._store = store
        self._registry = registry
        self._cache = cache
        # The cache keeps every suffix; suffix filtering happens at query time.
        self._normalizer = normalizer if normalizer is not None else TagNormalizer(all_tags=True)
        self._clock = clock
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    @property
    def store(self) -> TagStore:
        return self._store

    def sync(
        self,
        policy: FetchPolicy | None = None,
        *,
        cancel_token: CancellationToken | None = None,
    ) -> SyncOutcome:
        active = policy or FetchPolicy()
        now = self._clock()

        if active.no_fetch:
            if self._store.is_empty:
                raise NoDataAvailableError(
                    "no cached nightlies are available and fetching is disabled (--no-fetch)"
                )
            self._logger.info("nightlies_fetch_skipped", reason="no_fetch")
            return SyncOutcome(fetched=False, skipped_reason="no_fetch")

        fresh = (
            not active.force_fetch
            and not self._store.is_empty
            and not self._store.is_stale(active.staleness_window, now)
        )
        if fresh and active.include_digests and self._lacks_digests():
            self._logger.info("nightlies_fetch_forced", reason="digests_missing")
            fresh = False
        if fresh:
            self._logger.info(
                "nightlies_fetch_skipped",
                reason="cache_fresh",
                fetched_at=(
                    None
                    if self._store.fetched_at is None
                    else self._store.fetched_at.isoformat()
                ),
            )
            return SyncOutcome(fetched=False, skipped_reason="cache_fresh")

        incremental = (
            active.stop_at_cached_frontier and not active.force_fetch and not self._store.is_empty
        )
        cursor: str | None = None
        pages_read = added = updated = 0
        error: str | None = None
        cancelled = False

        while pages_read < active.num_registry_pages:
            if cancel_token is not None and cancel_token.is_cancelled:
                cancelled = True
                break
            try:
                page = self._registry.fetch_tag_page(cursor, include_digests=active.include_digests)
            except RegistryTransportError as exc:
                if pages_read == 0 and self._store.is_empty:
                    raise NoDataAvailableError(
                        f"registry unavailable and no cached nightlies exist: {exc}"
                    ) from exc
                error = str(exc)
                self._logger.warning(
                    "nightlies_fetch_page_failed", page=pages_read + 1, error=error
                )
                break

            pages_read += 1
            records, skipped = self._normalizer.normalize_many(page.tags)
            result = self._store.merge(records)
            added += result.added
            updated += result.updated
            self._logger.debug(
                "nightlies_fetch_page_merged",
                page=pages_read,
                tags=len(page.tags),
                skipped=skipped,
                added=result.added,
                updated=result.updated,
                unchanged=result.unchanged,
            )

            cursor = page.next_cursor
            if cursor is None:
                break
            if incremental and result.changed == 0:
                self._logger.debug("nightlies_fetch_frontier_reached", page=pages_read)
                break

        complete = error is None and not cancelled
        if complete:
            self._store.mark_fetched(now)
        self._persist()

        outcome = SyncOutcome(
            fetched=pages_read > 0,
            pages_read=pages_read,
            partial=error is not None,
            cancelled=cancelled,
            added=added,
            updated=updated,
            error=error,
        )
        self._logger.info("nightlies_fetch_completed", **outcome.to_dict())
        return outcome

    def _lacks_digests(self) -> bool:
        return any(record.digest is None for record in self._store.all_records())

    def _persist(self) -> None:
        if self._cache is None:
            return
        snapshot = self._store.snapshot()
        try:
            self._cache.save(snapshot.records, snapshot.fetched_at)
        except TagCacheError as exc:
            self._logger.warning("nightlies_cache_save_failed", error=str(exc))


__all__ = ["FetchCoordinator", "FetchPolicy"]
