"""
Append-only audit log of enrichment attempts.

Writes are best-effort: a failed insert is reported through the module
logger and swallowed, so a logging outage can never fail an enrichment or
turn a success into a reported failure.
"""

import logging
import uuid
from typing import Optional

from services.api.enrichment.freshness import now_ms
from services.api.enrichment.models import (
    EnrichmentLogEntry,
    EnrichmentStats,
    LogStatus,
)

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_LIMIT = 10
DEFAULT_STATS_WINDOW_HOURS = 24


class EnrichmentAuditLog:
    def __init__(self, store):
        self.store = store

    async def record(
        self,
        place_id: str,
        *,
        success: bool,
        duration: int,
        initiated_by: str,
        error: Optional[str] = None,
        error_code: Optional[str] = None,
        source_url: Optional[str] = None,
        fields_populated: Optional[int] = None,
    ) -> Optional[str]:
        """Write one attempt. Returns the entry id, or None if the write failed."""
        now = now_ms()
        entry = EnrichmentLogEntry(
            id=str(uuid.uuid4()),
            place_id=place_id,
            success=success,
            status=LogStatus.COMPLETED if success else LogStatus.FAILED,
            started_at=now - duration,
            completed_at=now,
            duration=duration,
            fields_populated=fields_populated,
            error=error,
            error_code=error_code,
            source_url=source_url,
            initiated_by=initiated_by,
            created_at=now,
        )
        try:
            await self.store.insert_log(entry)
        except Exception:
            logger.exception(
                "Failed to write enrichment log: city=%s success=%s error_code=%s error=%s",
                place_id, success, error_code, error,
            )
            return None
        return entry.id

    async def history(
        self, place_id: str, limit: int = DEFAULT_HISTORY_LIMIT
    ) -> list[EnrichmentLogEntry]:
        """Most recent attempts for one place, newest first."""
        return await self.store.list_logs(place_id, limit)

    async def stats(self, window_hours: float = DEFAULT_STATS_WINDOW_HOURS) -> EnrichmentStats:
        threshold = now_ms() - int(window_hours * 60 * 60 * 1000)
        entries = await self.store.list_logs_since(threshold)

        total = len(entries)
        if total == 0:
            return EnrichmentStats()

        successful = sum(1 for e in entries if e.success)
        return EnrichmentStats(
            total=total,
            successful=successful,
            failed=total - successful,
            avg_duration=sum(e.duration for e in entries) / total,
            success_rate=successful / total,
        )
