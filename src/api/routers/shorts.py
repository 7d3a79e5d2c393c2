"""Short-video generation job routes (REST, SSE and WebSocket)."""

import logging
from pathlib import Path

from api.dependencies import get_job_queue, get_store, get_stream_registry, get_ws_manager
from api.job_store import JobStore
from api.schemas import JobCreatedResponse, MessageResponse, ShortRequest
from fastapi import APIRouter, Depends, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.responses import FileResponse, JSONResponse
from models.job import GenerationJob, JobStatus
from shorts_agent.job_queue import JobQueue
from shorts_agent.phase_events import PhaseStreamRegistry
from starlette.responses import StreamingResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Shorts"])


@router.post(
    "/api/shorts",
    summary="Start short generation",
    description="Queue a short-video generation job. Returns the job id immediately.",
    response_model=JobCreatedResponse,
    status_code=202,
    responses={422: {"description": "Invalid request"}},
)
async def create_short(
    request: ShortRequest,
    store: JobStore = Depends(get_store),
    queue: JobQueue = Depends(get_job_queue),
    streams: PhaseStreamRegistry = Depends(get_stream_registry),
):
    """Create the job, open its event stream and hand it to the queue."""
    try:
        job = GenerationJob(**request.model_dump())
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e

    await store.save_job(job)
    streams.get_or_create(job.id)
    queue.enqueue(job.id, job)
    logger.info(f"Queued short {job.id} ({job.category}, {job.duration}s)")

    return JSONResponse(
        status_code=202,
        content={"job_id": job.id, "status": job.status.value},
    )


@router.get("/api/shorts", summary="List short jobs")
async def list_shorts(
    owner_id: str | None = None,
    status: str | None = None,
    limit: int = 100,
    store: JobStore = Depends(get_store),
) -> list[dict]:
    return await store.list_jobs(owner_id=owner_id, status=status, limit=min(limit, 500))


@router.get(
    "/api/shorts/{job_id}",
    summary="Get short job status",
    responses={404: {"description": "Job not found"}},
)
async def get_short(
    job_id: str,
    store: JobStore = Depends(get_store),
    streams: PhaseStreamRegistry = Depends(get_stream_registry),
) -> dict:
    job = await store.get_job(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found")

    stream = streams.get(job_id)
    phase = stream.current_phase if stream is not None else None
    job["phase"] = phase.value if phase is not None else None
    return job


@router.get(
    "/api/shorts/{job_id}/events",
    summary="Stream job phase events",
    description="Server-sent events: the history so far, then live events until COMPLETED or ERROR.",
    responses={404: {"description": "No event stream for this job"}},
)
async def stream_short_events(
    job_id: str,
    streams: PhaseStreamRegistry = Depends(get_stream_registry),
):
    stream = streams.get(job_id)
    if stream is None:
        raise HTTPException(status_code=404, detail="No event stream for this job")

    return StreamingResponse(
        stream.sse_iter(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@router.get(
    "/api/shorts/{job_id}/download",
    summary="Download short",
    responses={404: {"description": "Job or video not found"}, 400: {"description": "Job not completed"}},
)
async def download_short(job_id: str, store: JobStore = Depends(get_store)):
    job = await store.get_job(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found")
    if job["status"] != JobStatus.SUCCEEDED.value:
        raise HTTPException(status_code=400, detail=f"Job is {job['status']}, not succeeded")

    video_path = Path((job.get("result") or {}).get("video_path") or "")
    if not video_path.is_file():
        raise HTTPException(status_code=404, detail="Video file not found")

    return FileResponse(path=str(video_path), media_type="video/mp4", filename=f"short_{job_id}.mp4")


@router.delete(
    "/api/shorts/{job_id}",
    summary="Delete short job",
    response_model=MessageResponse,
    responses={404: {"description": "Job not found"}, 409: {"description": "Job still running"}},
)
async def delete_short(
    job_id: str,
    store: JobStore = Depends(get_store),
    queue: JobQueue = Depends(get_job_queue),
    streams: PhaseStreamRegistry = Depends(get_stream_registry),
) -> dict:
    if queue.is_in_flight(job_id):
        raise HTTPException(status_code=409, detail="Job is still queued or running")
    if not await store.delete_job(job_id):
        raise HTTPException(status_code=404, detail="Job not found")
    streams.discard(job_id)
    get_ws_manager().cleanup(job_id)
    return {"message": f"Job {job_id} deleted"}


@router.websocket("/ws/shorts/{job_id}")
async def websocket_short(websocket: WebSocket, job_id: str) -> None:
    """Push phase events for a job: the history first, then live events."""
    stream = get_stream_registry().get(job_id)
    if stream is None:
        await websocket.accept()
        await websocket.send_json({"phase": "ERROR", "extra": {"msg": "Job not found"}})
        await websocket.close()
        return

    ws_manager = get_ws_manager()
    await ws_manager.connect(job_id, websocket)

    try:
        for event in stream.history_dicts():
            await websocket.send_json(event)

        # Keep connection alive with ping/pong
        while True:
            try:
                data = await websocket.receive_text()
                if data == "ping":
                    await websocket.send_text("pong")
            except WebSocketDisconnect:
                break

    except Exception as e:
        logger.error(f"WebSocket error for short {job_id}: {e}")
    finally:
        ws_manager.disconnect(job_id, websocket)
