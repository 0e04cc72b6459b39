"""
Per-place enrichment lease.

The lease is two columns on the place row: enrichmentInProgress and
lockAcquiredAt. acquire() and release() are each one atomic store mutation.
A lease older than LOCK_TIMEOUT_MS is treated as abandoned (crashed worker)
and may be taken over.
"""

import logging
from typing import Optional

from services.api.enrichment.errors import EnrichmentError, ErrorCode
from services.api.enrichment.freshness import LOCK_TIMEOUT_MS, is_lock_stale, now_ms
from services.api.enrichment.models import Place

logger = logging.getLogger(__name__)


class LockManager:
    def __init__(self, store, timeout_ms: int = LOCK_TIMEOUT_MS):
        self.store = store
        self.timeout_ms = timeout_ms

    async def acquire(self, place_id: str) -> bool:
        """Take the lease. False if another attempt holds a live lease.

        Raises EnrichmentError(CITY_NOT_FOUND) if the place does not exist;
        callers are expected to check existence first.
        """
        now = now_ms()

        def _decide(place: Place) -> tuple[Optional[dict], bool]:
            lease = {"enrichment_in_progress": True, "lock_acquired_at": now}
            if not place.enrichment_in_progress:
                return lease, True
            if place.lock_acquired_at is None or is_lock_stale(
                place.lock_acquired_at, now=now, timeout_ms=self.timeout_ms
            ):
                logger.warning(
                    "Taking over stale enrichment lock on %s (acquired_at=%s)",
                    place_id, place.lock_acquired_at,
                )
                return lease, True
            return None, False

        acquired = await self.store.modify_place(place_id, _decide)
        if acquired is None:
            raise EnrichmentError(ErrorCode.CITY_NOT_FOUND, f"City {place_id} not found")
        return acquired

    async def release(self, place_id: str) -> None:
        """Clear the lease. Idempotent; unknown places are ignored."""

        def _clear(place: Place) -> tuple[dict, bool]:
            return {"enrichment_in_progress": False, "lock_acquired_at": None}, True

        await self.store.modify_place(place_id, _clear)

    async def sweep_stale_locks(self, now: Optional[int] = None) -> int:
        """Force-release every lease older than the timeout. Returns how many."""
        if now is None:
            now = now_ms()
        cleared = await self.store.clear_stale_locks(now - self.timeout_ms)
        if cleared:
            logger.info("Cleared %d stale enrichment locks", cleared)
        return cleared
