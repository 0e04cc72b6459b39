"""
Enrichment service facade: the operations the API and maintenance jobs call.

    service = EnrichmentService(store, extractor)
    await service.check_status(city_id)      # read-only
    service.trigger(city_id)                 # fire-and-forget from a page view
    await service.enrich(city_id)            # full workflow, never raises
    await service.sweep_stale_locks()        # hourly maintenance
"""

import asyncio
import logging
from typing import Optional

from services.api.enrichment.audit_log import DEFAULT_HISTORY_LIMIT, DEFAULT_STATS_WINDOW_HOURS
from services.api.enrichment.errors import EnrichmentError, ErrorCode
from services.api.enrichment.extractor import ContentExtractor
from services.api.enrichment.freshness import LOCK_TIMEOUT_MS, STALE_AFTER_MS
from services.api.enrichment.models import (
    EnrichmentContent,
    EnrichmentLogEntry,
    EnrichmentOutcome,
    EnrichmentStats,
    EnrichmentStatus,
    InitiatedBy,
)
from services.api.enrichment.orchestrator import FETCH_TIMEOUT_S, EnrichmentOrchestrator
from services.api.enrichment.status import resolve_status, should_trigger

logger = logging.getLogger(__name__)


class EnrichmentService:
    def __init__(
        self,
        store,
        extractor: ContentExtractor,
        *,
        fetch_timeout_s: float = FETCH_TIMEOUT_S,
        lock_timeout_ms: int = LOCK_TIMEOUT_MS,
        stale_after_ms: int = STALE_AFTER_MS,
    ):
        self.store = store
        self.stale_after_ms = stale_after_ms
        self.orchestrator = EnrichmentOrchestrator(
            store,
            extractor,
            fetch_timeout_s=fetch_timeout_s,
            lock_timeout_ms=lock_timeout_ms,
        )
        # Strong refs so detached tasks are not garbage-collected mid-flight
        self._tasks: set[asyncio.Task] = set()

    async def check_status(self, place_id: str) -> EnrichmentStatus:
        place = await self.store.get_place(place_id)
        if place is None:
            raise EnrichmentError(ErrorCode.CITY_NOT_FOUND, f"City {place_id} not found")
        return resolve_status(place, stale_after_ms=self.stale_after_ms)

    async def get_enrichment_content(self, place_id: str) -> Optional[EnrichmentContent]:
        return await self.store.get_content(place_id)

    async def enrich(
        self, place_id: str, initiated_by: Optional[InitiatedBy] = None,
    ) -> EnrichmentOutcome:
        return await self.orchestrator.enrich(place_id, initiated_by=initiated_by)

    async def trigger(self, place_id: str) -> tuple[bool, EnrichmentStatus]:
        """Start a detached enrichment if the place needs one.

        Returns whether a task was spawned, plus the status observed before
        spawning. The caller never sees the outcome; it reads the eventual
        status via check_status().
        """
        status = await self.check_status(place_id)
        if should_trigger(status):
            task = asyncio.create_task(self.enrich(place_id), name=f"enrich-city-{place_id}")
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
            logger.debug("Spawned enrichment for city %s (%s)", place_id, status.reason.value)
            return True, status
        return False, status

    @property
    def pending_tasks(self) -> set[asyncio.Task]:
        return set(self._tasks)

    async def drain(self) -> None:
        """Wait for in-flight detached enrichments (shutdown, tests)."""
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    async def get_history(
        self, place_id: str, limit: int = DEFAULT_HISTORY_LIMIT,
    ) -> list[EnrichmentLogEntry]:
        return await self.orchestrator.audit.history(place_id, limit)

    async def get_stats(self, window_hours: float = DEFAULT_STATS_WINDOW_HOURS) -> EnrichmentStats:
        return await self.orchestrator.audit.stats(window_hours)

    async def sweep_stale_locks(self) -> dict:
        cleared = await self.orchestrator.locks.sweep_stale_locks()
        return {"clearedCount": cleared}
