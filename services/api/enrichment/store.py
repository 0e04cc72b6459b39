"""
asyncpg-backed entity store for places, enrichment content and the enrichment log.

This is the only module that writes the enrichment tables. Lock fields are
mutated through modify_place(), which holds a row lock (SELECT ... FOR UPDATE)
for the whole read-decide-write so two concurrent acquirers cannot both see
the place unlocked.

Usage:
    pool = await asyncpg.create_pool(DATABASE_URL)
    store = EnrichmentStore(pool)
    place = await store.get_place(city_id)
"""

import json
import logging
import uuid
from pathlib import Path
from typing import Any, Callable, Optional, TypeVar

import asyncpg

from services.api.enrichment.errors import EnrichmentError, ErrorCode
from services.api.enrichment.models import (
    EnrichmentContent,
    EnrichmentLogEntry,
    LogStatus,
    Place,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

SCHEMA_PATH = Path(__file__).parent / "schema.sql"

# Python attribute -> quoted column
_PLACE_COLUMNS = {
    "is_enriched": '"isEnriched"',
    "last_enriched_at": '"lastEnrichedAt"',
    "enrichment_in_progress": '"enrichmentInProgress"',
    "lock_acquired_at": '"lockAcquiredAt"',
}

_CONTENT_COLUMNS = {
    "description": "description",
    "history": "history",
    "geography": "geography",
    "climate": "climate",
    "transportation": "transportation",
    "tourism": "tourism",
    "images": "images",
    "image_url": '"imageUrl"',
    "source_url": '"sourceUrl"',
    "scraped_at": '"scrapedAt"',
}

_JSON_FIELDS = frozenset({"tourism", "images"})

_PLACE_SELECT = (
    'SELECT id, name, country, "isEnriched", "lastEnrichedAt", '
    '"enrichmentInProgress", "lockAcquiredAt" FROM cities WHERE id = $1'
)

_LOG_SELECT = (
    'SELECT id, "cityId", success, status, "startedAt", "completedAt", duration, '
    '"fieldsPopulated", error, "errorCode", "sourceUrl", "initiatedBy", "createdAt" '
    "FROM enrichment_logs"
)

# Mutation callback: place -> (column patch or None, value returned to caller)
PlaceMutation = Callable[[Place], tuple[Optional[dict[str, Any]], T]]


def _encode(name: str, value: Any) -> Any:
    if name in _JSON_FIELDS and value is not None:
        return json.dumps(value)
    return value


def _decode_json(value: Any) -> Any:
    if isinstance(value, str):
        return json.loads(value)
    return value


def _content_from_record(row) -> EnrichmentContent:
    return EnrichmentContent(
        id=row["id"],
        place_id=row["cityId"],
        description=row["description"],
        history=row["history"],
        geography=row["geography"],
        climate=row["climate"],
        transportation=row["transportation"],
        tourism=_decode_json(row["tourism"]),
        images=_decode_json(row["images"]),
        image_url=row["imageUrl"],
        source_url=row["sourceUrl"],
        scraped_at=row["scrapedAt"],
    )


def _log_from_record(row) -> EnrichmentLogEntry:
    return EnrichmentLogEntry(
        id=row["id"],
        place_id=row["cityId"],
        success=row["success"],
        status=LogStatus(row["status"]),
        started_at=row["startedAt"],
        completed_at=row["completedAt"],
        duration=row["duration"],
        fields_populated=row["fieldsPopulated"],
        error=row["error"],
        error_code=row["errorCode"],
        source_url=row["sourceUrl"],
        initiated_by=row["initiatedBy"],
        created_at=row["createdAt"],
    )


def _set_clause(columns: dict[str, str], patch: dict[str, Any], start: int) -> tuple[str, list]:
    """Build 'col = $n, ...' for a patch dict; params numbered from `start`."""
    parts = []
    params = []
    for i, (name, value) in enumerate(patch.items(), start=start):
        column = columns[name]
        cast = "::jsonb" if name in _JSON_FIELDS else ""
        parts.append(f"{column} = ${i}{cast}")
        params.append(_encode(name, value))
    return ", ".join(parts), params


class EnrichmentStore:
    """Persistence boundary for the enrichment core."""

    def __init__(self, pool: asyncpg.Pool):
        self._pool = pool

    # -- places ------------------------------------------------------------

    async def get_place(self, place_id: str) -> Optional[Place]:
        row = await self._pool.fetchrow(_PLACE_SELECT, place_id)
        return Place.from_record(row) if row else None

    async def modify_place(self, place_id: str, mutate: PlaceMutation) -> Optional[T]:
        """Atomic read-modify-write of one place row.

        Returns whatever mutate() returns, or None if the place does not exist.
        """
        async with self._pool.acquire() as conn:
            async with conn.transaction():
                row = await conn.fetchrow(_PLACE_SELECT + " FOR UPDATE", place_id)
                if row is None:
                    return None
                patch, result = mutate(Place.from_record(row))
                if patch:
                    clause, params = _set_clause(_PLACE_COLUMNS, patch, start=2)
                    await conn.execute(
                        f"UPDATE cities SET {clause} WHERE id = $1",
                        place_id,
                        *params,
                    )
                return result

    async def clear_stale_locks(self, threshold_ms: int) -> int:
        """Force-release every lock acquired before threshold_ms."""
        result = await self._pool.execute(
            """
            UPDATE cities
            SET "enrichmentInProgress" = false, "lockAcquiredAt" = NULL
            WHERE "enrichmentInProgress" = true
              AND ("lockAcquiredAt" IS NULL OR "lockAcquiredAt" < $1)
            """,
            threshold_ms,
        )
        # asyncpg returns "UPDATE N"
        return int(result.split()[-1])

    # -- content -----------------------------------------------------------

    async def get_content(self, place_id: str) -> Optional[EnrichmentContent]:
        row = await self._pool.fetchrow(
            'SELECT id, "cityId", description, history, geography, climate, '
            'transportation, tourism, images, "imageUrl", "sourceUrl", "scrapedAt" '
            'FROM city_enrichment_content WHERE "cityId" = $1',
            place_id,
        )
        return _content_from_record(row) if row else None

    async def save_merge(
        self,
        place_id: str,
        existing: Optional[EnrichmentContent],
        fields: dict[str, Any],
        enriched_at: int,
    ) -> None:
        """Write merged content and mark the place enriched, in one transaction."""
        try:
            async with self._pool.acquire() as conn:
                async with conn.transaction():
                    if existing is None:
                        names = list(fields)
                        columns = ", ".join(_CONTENT_COLUMNS[n] for n in names)
                        placeholders = ", ".join(
                            f"${i}::jsonb" if n in _JSON_FIELDS else f"${i}"
                            for i, n in enumerate(names, start=3)
                        )
                        await conn.execute(
                            f'INSERT INTO city_enrichment_content (id, "cityId", {columns}) '
                            f"VALUES ($1, $2, {placeholders})",
                            str(uuid.uuid4()),
                            place_id,
                            *[_encode(n, fields[n]) for n in names],
                        )
                    else:
                        clause, params = _set_clause(_CONTENT_COLUMNS, fields, start=2)
                        await conn.execute(
                            f"UPDATE city_enrichment_content SET {clause} WHERE id = $1",
                            existing.id,
                            *params,
                        )
                    await conn.execute(
                        'UPDATE cities SET "isEnriched" = true, "lastEnrichedAt" = $2 WHERE id = $1',
                        place_id,
                        enriched_at,
                    )
        except Exception as exc:
            logger.error("Failed to persist enrichment for %s: %s", place_id, exc)
            raise EnrichmentError(ErrorCode.DATABASE_ERROR, str(exc)) from exc

    # -- log ---------------------------------------------------------------

    async def insert_log(self, entry: EnrichmentLogEntry) -> None:
        await self._pool.execute(
            """
            INSERT INTO enrichment_logs (
                id, "cityId", success, status, "startedAt", "completedAt", duration,
                "fieldsPopulated", error, "errorCode", "sourceUrl", "initiatedBy", "createdAt"
            ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13)
            """,
            entry.id,
            entry.place_id,
            entry.success,
            entry.status.value,
            entry.started_at,
            entry.completed_at,
            entry.duration,
            entry.fields_populated,
            entry.error,
            entry.error_code,
            entry.source_url,
            entry.initiated_by,
            entry.created_at,
        )

    async def list_logs(self, place_id: str, limit: int) -> list[EnrichmentLogEntry]:
        rows = await self._pool.fetch(
            _LOG_SELECT + ' WHERE "cityId" = $1 ORDER BY "createdAt" DESC LIMIT $2',
            place_id,
            limit,
        )
        return [_log_from_record(r) for r in rows]

    async def list_logs_since(self, since_ms: int) -> list[EnrichmentLogEntry]:
        rows = await self._pool.fetch(
            _LOG_SELECT + ' WHERE "createdAt" > $1 ORDER BY "createdAt" DESC',
            since_ms,
        )
        return [_log_from_record(r) for r in rows]


async def apply_schema(pool: asyncpg.Pool) -> None:
    """Create the enrichment tables/columns if missing (idempotent DDL)."""
    ddl = SCHEMA_PATH.read_text()
    async with pool.acquire() as conn:
        await conn.execute(ddl)
    logger.info("Enrichment schema applied from %s", SCHEMA_PATH.name)
