"""
City content enrichment for Overplanned.

Pull-triggered: a city page view checks status and, when content is missing
or stale, starts one leased enrichment attempt that:
- Fetches the city's Wikipedia article through the extraction provider
- Validates and merges fields without regressing stored content
- Writes one audit log entry per attempt
"""

from .errors import EnrichmentError, ErrorCode, classify_error
from .extractor import FirecrawlExtractor, construct_wikipedia_url
from .models import (
    EnrichmentContent,
    EnrichmentLogEntry,
    EnrichmentOutcome,
    EnrichmentReason,
    EnrichmentStats,
    EnrichmentStatus,
    InitiatedBy,
    Place,
)
from .service import EnrichmentService
from .store import EnrichmentStore, apply_schema

__all__ = [
    "EnrichmentError",
    "ErrorCode",
    "classify_error",
    "FirecrawlExtractor",
    "construct_wikipedia_url",
    "EnrichmentContent",
    "EnrichmentLogEntry",
    "EnrichmentOutcome",
    "EnrichmentReason",
    "EnrichmentStats",
    "EnrichmentStatus",
    "InitiatedBy",
    "Place",
    "EnrichmentService",
    "EnrichmentStore",
    "apply_schema",
]
