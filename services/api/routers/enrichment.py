"""
City enrichment endpoints.

GET  /cities/{city_id}/enrichment/status   - needs enrichment? and why
GET  /cities/{city_id}/enrichment          - stored content (null until first success)
POST /cities/{city_id}/enrichment/trigger  - fire-and-forget from a city page view
POST /cities/{city_id}/enrichment          - run inline (manual trigger)
GET  /cities/{city_id}/enrichment/history  - recent attempts, newest first
GET  /enrichment/stats                     - aggregate over a trailing window
POST /admin/enrichment/sweep-locks         - clear abandoned leases

Thin application layer over EnrichmentService; no business logic here.
"""

import logging

from fastapi import APIRouter, HTTPException, Query, Request
from starlette.responses import JSONResponse

from services.api.enrichment.errors import EnrichmentError, ErrorCode
from services.api.enrichment.models import InitiatedBy
from services.api.enrichment.service import EnrichmentService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["enrichment"])


def _service(request: Request) -> EnrichmentService:
    service = getattr(request.app.state, "enrichment", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Enrichment service unavailable")
    return service


def _ok(request: Request, data, status_code: int = 200):
    body = {"success": True, "data": data, "requestId": request.state.request_id}
    if status_code != 200:
        return JSONResponse(status_code=status_code, content=body)
    return body


def _city_not_found(request: Request, exc: EnrichmentError) -> JSONResponse:
    return JSONResponse(
        status_code=404,
        content={
            "success": False,
            "error": {"code": exc.code.value, "message": exc.message},
            "requestId": request.state.request_id,
        },
    )


@router.get("/cities/{city_id}/enrichment/status")
async def get_enrichment_status(city_id: str, request: Request):
    try:
        status = await _service(request).check_status(city_id)
    except EnrichmentError as exc:
        if exc.code == ErrorCode.CITY_NOT_FOUND:
            return _city_not_found(request, exc)
        raise
    return _ok(request, status.to_dict())


@router.get("/cities/{city_id}/enrichment")
async def get_enrichment_content(city_id: str, request: Request):
    content = await _service(request).get_enrichment_content(city_id)
    return _ok(request, content.to_dict() if content else None)


@router.post("/cities/{city_id}/enrichment/trigger")
async def trigger_enrichment(city_id: str, request: Request):
    try:
        triggered, status = await _service(request).trigger(city_id)
    except EnrichmentError as exc:
        if exc.code == ErrorCode.CITY_NOT_FOUND:
            return _city_not_found(request, exc)
        raise
    return _ok(
        request,
        {"triggered": triggered, "reason": status.reason.value},
        status_code=202,
    )


@router.post("/cities/{city_id}/enrichment")
async def run_enrichment(city_id: str, request: Request):
    outcome = await _service(request).enrich(city_id, initiated_by=InitiatedBy.MANUAL_TRIGGER)
    return _ok(request, outcome.to_dict())


@router.get("/cities/{city_id}/enrichment/history")
async def get_enrichment_history(
    city_id: str,
    request: Request,
    limit: int = Query(default=10, ge=1, le=50),
):
    entries = await _service(request).get_history(city_id, limit=limit)
    return _ok(request, [e.to_dict() for e in entries])


@router.get("/enrichment/stats")
async def get_enrichment_stats(
    request: Request,
    hours: int = Query(default=24, ge=1, le=720),
):
    stats = await _service(request).get_stats(window_hours=hours)
    return _ok(request, {**stats.to_dict(), "windowHours": hours})


@router.post("/admin/enrichment/sweep-locks")
async def sweep_enrichment_locks(request: Request):
    result = await _service(request).sweep_stale_locks()
    logger.info("Manual lock sweep cleared %d locks", result["clearedCount"])
    return _ok(request, result)
