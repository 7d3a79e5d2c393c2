"""Core routes for the trendshorts API (root and health check)."""

from api.dependencies import get_job_queue, get_poller
from api.schemas import HealthResponse, RootResponse
from fastapi import APIRouter

router = APIRouter(tags=["Core"])


@router.get(
    "/",
    response_model=RootResponse,
    summary="API root",
    description="Returns API name and version.",
)
async def root() -> dict[str, str]:
    """Root endpoint."""
    return {"message": "trendshorts API", "version": "1.0.0"}


@router.get(
    "/api/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Returns server health, queue depth and scheduler state.",
)
async def health() -> dict:
    """Health check endpoint."""
    queue = get_job_queue()
    poller = get_poller()
    return {
        "status": "healthy",
        "queue_length": len(queue),
        "processing": queue.processing,
        "scheduler_running": poller is not None and poller.running,
    }
