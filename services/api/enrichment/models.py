"""
Value objects for the city enrichment pipeline.

Storage-shaped records (Place, EnrichmentContent, EnrichmentLogEntry) are
plain dataclasses built from asyncpg rows. The provider payload is a
pydantic model so the extraction boundary gets an explicit schema check.

All timestamps are integer milliseconds since the epoch.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class EnrichmentReason(str, Enum):
    NEVER_ENRICHED = "never_enriched"
    IN_PROGRESS = "in_progress"
    STALE_DATA = "stale_data"
    UP_TO_DATE = "up_to_date"


class InitiatedBy(str, Enum):
    USER_VISIT = "user_visit"
    STALE_REFRESH = "stale_refresh"
    MANUAL_TRIGGER = "manual_trigger"
    CRON_JOB = "cron_job"


class LogStatus(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"


# ---------------------------------------------------------------------------
# Stored records
# ---------------------------------------------------------------------------

@dataclass
class Place:
    """A city row, reduced to what the enrichment core reads."""
    id: str
    name: str
    country: str
    is_enriched: bool = False
    last_enriched_at: Optional[int] = None
    enrichment_in_progress: bool = False
    lock_acquired_at: Optional[int] = None

    @classmethod
    def from_record(cls, row: Mapping[str, Any]) -> "Place":
        return cls(
            id=row["id"],
            name=row["name"],
            country=row["country"],
            is_enriched=bool(row.get("isEnriched")),
            last_enriched_at=row.get("lastEnrichedAt"),
            enrichment_in_progress=bool(row.get("enrichmentInProgress")),
            lock_acquired_at=row.get("lockAcquiredAt"),
        )


@dataclass
class EnrichmentContent:
    """Enriched content for one place (1:1, created on first success)."""
    id: str
    place_id: str
    description: Optional[str] = None
    history: Optional[str] = None
    geography: Optional[str] = None
    climate: Optional[str] = None
    transportation: Optional[str] = None
    tourism: Optional[dict[str, Any]] = None
    images: Optional[list[str]] = None
    image_url: Optional[str] = None
    source_url: Optional[str] = None
    scraped_at: Optional[int] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "cityId": self.place_id,
            "description": self.description,
            "history": self.history,
            "geography": self.geography,
            "climate": self.climate,
            "transportation": self.transportation,
            "tourism": self.tourism,
            "images": self.images,
            "imageUrl": self.image_url,
            "sourceUrl": self.source_url,
            "scrapedAt": self.scraped_at,
        }


@dataclass(frozen=True)
class EnrichmentLogEntry:
    """One enrichment attempt. Append-only; never updated after insert."""
    id: str
    place_id: str
    success: bool
    status: LogStatus
    started_at: int
    completed_at: int
    duration: int
    initiated_by: str
    created_at: int
    fields_populated: Optional[int] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    source_url: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "cityId": self.place_id,
            "success": self.success,
            "status": self.status.value,
            "startedAt": self.started_at,
            "completedAt": self.completed_at,
            "duration": self.duration,
            "fieldsPopulated": self.fields_populated,
            "error": self.error,
            "errorCode": self.error_code,
            "sourceUrl": self.source_url,
            "initiatedBy": self.initiated_by,
            "createdAt": self.created_at,
        }


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class EnrichmentStatus:
    needs_enrichment: bool
    reason: EnrichmentReason

    def to_dict(self) -> dict[str, Any]:
        return {"needsEnrichment": self.needs_enrichment, "reason": self.reason.value}


@dataclass
class EnrichmentOutcome:
    """Typed result of one enrich() call. Failures never escape as exceptions."""
    success: bool
    duration: int
    error: Optional[str] = None
    error_code: Optional[str] = None
    fields_populated: Optional[int] = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"success": self.success, "duration": self.duration}
        if self.success:
            out["fieldsPopulated"] = self.fields_populated
        else:
            out["error"] = self.error
            out["errorCode"] = self.error_code
        return out


@dataclass
class EnrichmentStats:
    total: int = 0
    successful: int = 0
    failed: int = 0
    avg_duration: float = 0.0
    success_rate: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "successful": self.successful,
            "failed": self.failed,
            "avgDuration": self.avg_duration,
            "successRate": self.success_rate,
        }


# ---------------------------------------------------------------------------
# Provider payload
# ---------------------------------------------------------------------------

class PointOfInterest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str
    description: str = ""

    @field_validator("description", mode="before")
    @classmethod
    def blank_description(cls, v):
        return v if isinstance(v, str) else ""


def _named_items(v):
    """Keep list entries usable as a PointOfInterest; drop the rest."""
    if not isinstance(v, list):
        return v
    items = []
    for item in v:
        # Providers sometimes return ["Eiffel Tower", ...] instead of objects
        if isinstance(item, str):
            item = {"name": item}
        if isinstance(item, dict) and isinstance(item.get("name"), str) and item["name"].strip():
            items.append(item)
    return items


class TourismInfo(BaseModel):
    model_config = ConfigDict(extra="ignore")

    overview: Optional[str] = None
    landmarks: Optional[list[PointOfInterest]] = None
    museums: Optional[list[PointOfInterest]] = None
    attractions: Optional[list[PointOfInterest]] = None

    @field_validator("landmarks", "museums", "attractions", mode="before")
    @classmethod
    def keep_named_items(cls, v):
        return _named_items(v)


class ExtractedContent(BaseModel):
    """Validated field map returned by the extraction provider for one harvest."""
    model_config = ConfigDict(extra="ignore")

    description: Optional[str] = None
    history: Optional[str] = None
    geography: Optional[str] = None
    climate: Optional[str] = None
    transportation: Optional[str] = None
    tourism: Optional[TourismInfo] = None
    images: Optional[list[str]] = None
    image_url: Optional[str] = None
    source_url: str
    scraped_at: int = Field(gt=0)

    @field_validator("images", mode="before")
    @classmethod
    def keep_url_strings(cls, v):
        if isinstance(v, list):
            return [item for item in v if isinstance(item, str) and item.strip()]
        return v

    def content_fields(self) -> dict[str, Any]:
        """Content fields only (no harvest metadata), tourism flattened to a dict."""
        fields = self.model_dump(exclude={"source_url", "scraped_at", "tourism"})
        tourism = self.tourism.model_dump(exclude_none=True) if self.tourism else None
        fields["tourism"] = tourism or None
        return fields
