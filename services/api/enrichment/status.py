"""Enrichment status resolution. Recomputed on every read, never stored."""

from typing import Optional

from services.api.enrichment.freshness import STALE_AFTER_MS, is_stale
from services.api.enrichment.models import EnrichmentReason, EnrichmentStatus, Place


def resolve_status(
    place: Place,
    now: Optional[int] = None,
    stale_after_ms: int = STALE_AFTER_MS,
) -> EnrichmentStatus:
    """Precedence: in_progress > never_enriched > stale_data > up_to_date.

    An in-flight attempt masks staleness so it does not trigger a duplicate.
    """
    if place.enrichment_in_progress:
        reason = EnrichmentReason.IN_PROGRESS
    elif not place.is_enriched or place.last_enriched_at is None:
        reason = EnrichmentReason.NEVER_ENRICHED
    elif is_stale(place.last_enriched_at, now=now, threshold_ms=stale_after_ms):
        reason = EnrichmentReason.STALE_DATA
    else:
        reason = EnrichmentReason.UP_TO_DATE

    return EnrichmentStatus(
        needs_enrichment=reason != EnrichmentReason.UP_TO_DATE,
        reason=reason,
    )


def should_trigger(status: EnrichmentStatus) -> bool:
    """Whether a page view should start a new attempt."""
    return status.needs_enrichment and status.reason != EnrichmentReason.IN_PROGRESS
