"""
City enrichment workflow.

    load place -> acquire lease -> fetch (bounded) -> validate -> merge
    -> persist -> audit log -> release lease

Every attempt, including ones rejected before the lease is taken, writes
exactly one audit log entry. The lease is released on every path once it
has been acquired. enrich() never raises: failures come back as an
EnrichmentOutcome carrying an error code.
"""

import asyncio
import logging
import time
from typing import Any, Optional

import sentry_sdk
from pydantic import ValidationError

from services.api.enrichment.audit_log import EnrichmentAuditLog
from services.api.enrichment.errors import (
    EnrichmentError,
    ErrorCode,
    describe_error,
)
from services.api.enrichment.extractor import (
    CITY_EXTRACTION_SCHEMA,
    MAX_SECTION_LENGTHS,
    ContentExtractor,
    construct_wikipedia_url,
    truncate_text,
)
from services.api.enrichment.freshness import LOCK_TIMEOUT_MS, now_ms
from services.api.enrichment.lock import LockManager
from services.api.enrichment.merge import CONTENT_FIELDS, merge_content, validate_extracted
from services.api.enrichment.models import (
    EnrichmentOutcome,
    ExtractedContent,
    InitiatedBy,
    Place,
)

logger = logging.getLogger(__name__)

FETCH_TIMEOUT_S = 30.0

# Codes worth paging on; provider and precondition failures are routine
_REPORTED_CODES = frozenset({ErrorCode.ENRICHMENT_ERROR, ErrorCode.DATABASE_ERROR})


class _AttemptFailed(Exception):
    """Internal: failure inside the leased region, already audit-logged."""

    def __init__(self, code: ErrorCode, message: str):
        super().__init__(message)
        self.code = code
        self.message = message


def _build_content(fields: dict[str, Any], source_url: str, scraped_at: int) -> ExtractedContent:
    """Validate the provider's field map at the boundary, one field at a time.

    A malformed optional field is dropped with a warning. Whether what remains
    is usable is decided by validate_extracted(), not here.
    """
    metadata = {"source_url": source_url, "scraped_at": scraped_at}
    payload = dict(metadata)
    for name in CONTENT_FIELDS:
        value = fields.get(name)
        if value is None:
            continue
        limit = MAX_SECTION_LENGTHS.get(name)
        if limit and isinstance(value, str):
            value = truncate_text(value, limit)
        try:
            ExtractedContent.model_validate({**metadata, name: value})
        except ValidationError as exc:
            logger.warning(
                "Dropping malformed field %r from %s (%d errors)",
                name, source_url, exc.error_count(),
            )
            continue
        payload[name] = value
    return ExtractedContent.model_validate(payload)


class EnrichmentOrchestrator:
    def __init__(
        self,
        store,
        extractor: ContentExtractor,
        *,
        fetch_timeout_s: float = FETCH_TIMEOUT_S,
        lock_timeout_ms: int = LOCK_TIMEOUT_MS,
    ):
        self.store = store
        self.extractor = extractor
        self.fetch_timeout_s = fetch_timeout_s
        self.locks = LockManager(store, timeout_ms=lock_timeout_ms)
        self.audit = EnrichmentAuditLog(store)

    async def enrich(
        self,
        place_id: str,
        initiated_by: Optional[InitiatedBy] = None,
    ) -> EnrichmentOutcome:
        t0 = time.monotonic()
        initiator = initiated_by.value if initiated_by else InitiatedBy.USER_VISIT.value

        def _elapsed() -> int:
            return int((time.monotonic() - t0) * 1000)

        try:
            place = await self.store.get_place(place_id)
            if place is None:
                return await self._reject(
                    place_id, ErrorCode.CITY_NOT_FOUND, f"City {place_id} not found",
                    _elapsed(), initiator,
                )

            if initiated_by is None:
                initiator = (
                    InitiatedBy.STALE_REFRESH if place.is_enriched else InitiatedBy.USER_VISIT
                ).value

            if not await self.locks.acquire(place_id):
                return await self._reject(
                    place_id, ErrorCode.LOCK_ACQUISITION_FAILED,
                    "Lock acquisition failed - enrichment already in progress",
                    _elapsed(), initiator,
                )

            try:
                fields_populated = await self._run_leased(place, initiator, _elapsed)
            finally:
                await self._release(place_id)

            return EnrichmentOutcome(
                success=True, duration=_elapsed(), fields_populated=fields_populated,
            )

        except _AttemptFailed as exc:
            return EnrichmentOutcome(
                success=False, duration=_elapsed(), error=exc.message, error_code=exc.code.value,
            )
        except Exception as exc:
            # Anything that escaped before an audit entry was written
            code, message = describe_error(exc)
            duration = _elapsed()
            self._report(place_id, code, message, duration, initiator, exc)
            await self.audit.record(
                place_id, success=False, duration=duration, initiated_by=initiator,
                error=message, error_code=code.value,
            )
            return EnrichmentOutcome(
                success=False, duration=duration, error=message, error_code=code.value,
            )

    async def _run_leased(self, place: Place, initiator: str, elapsed) -> int:
        """Fetch, validate, merge, persist. Runs while holding the lease."""
        source_url = construct_wikipedia_url(place.name, place.country)
        try:
            fields = await asyncio.wait_for(
                self.extractor.extract(source_url, CITY_EXTRACTION_SCHEMA, self.fetch_timeout_s),
                timeout=self.fetch_timeout_s,
            )
            content = _build_content(fields, source_url, now_ms())
            fields_populated = validate_extracted(content)

            existing = await self.store.get_content(place.id)
            updates = merge_content(existing, content)
            await self.store.save_merge(place.id, existing, updates, enriched_at=now_ms())
        except Exception as exc:
            code, message = describe_error(exc)
            duration = elapsed()
            self._report(place.id, code, message, duration, initiator, exc)
            await self.audit.record(
                place.id, success=False, duration=duration, initiated_by=initiator,
                error=message, error_code=code.value, source_url=source_url,
            )
            raise _AttemptFailed(code, message) from exc

        duration = elapsed()
        await self.audit.record(
            place.id, success=True, duration=duration, initiated_by=initiator,
            source_url=source_url, fields_populated=fields_populated,
        )
        logger.info(
            "Enriched city %s (%s, %s): %d fields in %dms [%s]",
            place.id, place.name, place.country, fields_populated, duration, initiator,
        )
        return fields_populated

    async def _reject(
        self, place_id: str, code: ErrorCode, message: str, duration: int, initiator: str,
    ) -> EnrichmentOutcome:
        """Precondition failure: logged, no lease held, no external call made."""
        exc = EnrichmentError(code, message)
        error = str(exc)
        self._report(place_id, code, error, duration, initiator, exc)
        await self.audit.record(
            place_id, success=False, duration=duration, initiated_by=initiator,
            error=error, error_code=code.value,
        )
        return EnrichmentOutcome(
            success=False, duration=duration, error=error, error_code=code.value,
        )

    async def _release(self, place_id: str) -> None:
        try:
            await self.locks.release(place_id)
        except Exception:
            # Sweep clears it after LOCK_TIMEOUT_MS
            logger.exception("Failed to release enrichment lock for city %s", place_id)

    def _report(
        self,
        place_id: str,
        code: ErrorCode,
        message: str,
        duration: int,
        initiator: str,
        exc: BaseException,
    ) -> None:
        logger.error(
            "[Enrichment Error] City %s: %s (code=%s duration=%dms initiated_by=%s)",
            place_id, message, code.value, duration, initiator,
        )
        if code in _REPORTED_CODES:
            with sentry_sdk.new_scope() as scope:
                scope.set_tag("feature", "city-enrichment")
                scope.set_tag("error_code", code.value)
                scope.set_extra("city_id", place_id)
                sentry_sdk.capture_exception(exc)
