"""
Field-level reconciliation of freshly extracted content with stored content.

Rules (per content field, independently):
  - existing value absent            -> take incoming (gap fill)
  - incoming present and newer       -> take incoming
  - incoming present, no existing ts -> take incoming
  - otherwise                        -> keep existing (never regress to null)

sourceUrl / scrapedAt always move to the latest harvest. Per-field history
lives in the enrichment log, not in the content row.
"""

import logging
from typing import Any, Mapping, Optional

from services.api.enrichment.errors import EnrichmentError, ErrorCode
from services.api.enrichment.models import EnrichmentContent, ExtractedContent

logger = logging.getLogger(__name__)

CONTENT_FIELDS: tuple[str, ...] = (
    "description",
    "history",
    "geography",
    "climate",
    "transportation",
    "tourism",
    "images",
    "image_url",
)

METADATA_FIELDS: tuple[str, ...] = ("source_url", "scraped_at")


def _is_populated(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return len(value.strip()) > 0
    if isinstance(value, (list, tuple, dict)):
        return len(value) > 0
    return True


def count_populated_fields(data: Mapping[str, Any]) -> int:
    """Count top-level values that carry content.

    Non-empty strings, non-empty arrays and non-empty objects count; None and
    blanks do not. Other scalars (numbers, booleans) count as populated.
    """
    return sum(1 for value in data.values() if _is_populated(value))


def validate_extracted(content: ExtractedContent) -> int:
    """Validation gate run before any merge. Returns the populated-field count."""
    fields = content.content_fields()
    populated = count_populated_fields(fields)
    if populated == 0:
        raise EnrichmentError(
            ErrorCode.VALIDATION_ERROR,
            f"Extraction from {content.source_url} returned no populated fields",
        )
    if not _is_populated(content.description):
        raise EnrichmentError(
            ErrorCode.VALIDATION_ERROR,
            f"Extraction from {content.source_url} is missing a description",
        )
    return populated


def should_update(
    existing: Any,
    incoming: Any,
    existing_scraped_at: Optional[int],
    incoming_scraped_at: int,
) -> bool:
    """Decide whether one stored field is replaced by the incoming value."""
    if existing is None:
        return True
    if _is_populated(incoming):
        if not existing_scraped_at:
            return True
        return incoming_scraped_at > existing_scraped_at
    return False


def merge_content(
    existing: Optional[EnrichmentContent],
    incoming: ExtractedContent,
) -> dict[str, Any]:
    """Compute the fields to write for this harvest.

    With no stored content every non-null incoming field is returned (an
    insert). Otherwise only fields passing should_update() are returned (a
    patch). Metadata is always included.
    """
    incoming_fields = incoming.content_fields()

    if existing is None:
        updates = {
            name: value for name, value in incoming_fields.items()
            if name in CONTENT_FIELDS and _is_populated(value)
        }
    else:
        updates = {}
        for name in CONTENT_FIELDS:
            new_value = incoming_fields.get(name)
            if not _is_populated(new_value):
                new_value = None
            if should_update(
                getattr(existing, name),
                new_value,
                existing.scraped_at,
                incoming.scraped_at,
            ) and new_value is not None:
                updates[name] = new_value

        preserved = [n for n in CONTENT_FIELDS if n not in updates and getattr(existing, n) is not None]
        logger.debug(
            "Merge for %s: updating %s, preserving %s",
            existing.place_id, sorted(updates), preserved,
        )

    updates["source_url"] = incoming.source_url
    updates["scraped_at"] = incoming.scraped_at
    return updates
