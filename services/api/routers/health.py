"""Health check endpoint."""

from fastapi import APIRouter, Request

router = APIRouter()


@router.get("/health")
async def health_check(request: Request) -> dict:
    service = getattr(request.app.state, "enrichment", None)
    return {
        "success": True,
        "data": {
            "status": "healthy",
            "version": request.app.state.settings.app_version,
            "pendingEnrichments": len(service.pending_tasks) if service else 0,
        },
        "requestId": request.state.request_id,
    }
