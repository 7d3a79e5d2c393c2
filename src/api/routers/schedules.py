"""Recurring schedule routes."""

import logging
from datetime import datetime, timezone

from api.dependencies import get_store
from api.job_store import JobStore
from api.schemas import MessageResponse, ScheduleCreateRequest, ScheduleUpdateRequest
from fastapi import APIRouter, Depends, HTTPException
from models.schedule import ScheduleEntry
from shorts_agent.scheduler import initial_next_run

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Schedules"])


async def _require_schedule(store: JobStore, schedule_id: str) -> ScheduleEntry:
    entry = await store.get_schedule(schedule_id)
    if entry is None:
        raise HTTPException(status_code=404, detail="Schedule not found")
    return entry


@router.post(
    "/api/schedules",
    summary="Create schedule",
    status_code=201,
    responses={422: {"description": "Invalid schedule"}},
)
async def create_schedule(
    request: ScheduleCreateRequest, store: JobStore = Depends(get_store)
) -> dict:
    now = datetime.now(timezone.utc)
    start_date = request.start_date or now.date()
    if request.end_date is not None and request.end_date < start_date:
        raise HTTPException(status_code=422, detail="end_date is before start_date")

    try:
        next_run = initial_next_run(
            request.schedule_type, request.time_of_day, request.timezone, start_date, now
        )
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e

    entry = ScheduleEntry(
        owner_id=request.owner_id,
        schedule_type=request.schedule_type,
        time_of_day=request.time_of_day,
        timezone=request.timezone,
        start_date=start_date,
        end_date=request.end_date,
        next_run=next_run,
        job_template=request.job.model_dump(),
    )
    await store.save_schedule(entry)
    logger.info(f"Created {entry.schedule_type.value} schedule {entry.id}, next run {next_run.isoformat()}")
    return entry.to_dict()


@router.get("/api/schedules", summary="List schedules")
async def list_schedules(
    owner_id: str | None = None,
    active_only: bool = False,
    store: JobStore = Depends(get_store),
) -> list[dict]:
    entries = await store.list_schedules(owner_id=owner_id, active_only=active_only)
    return [e.to_dict() for e in entries]


@router.get(
    "/api/schedules/{schedule_id}",
    summary="Get schedule",
    responses={404: {"description": "Schedule not found"}},
)
async def get_schedule(schedule_id: str, store: JobStore = Depends(get_store)) -> dict:
    return (await _require_schedule(store, schedule_id)).to_dict()


@router.patch(
    "/api/schedules/{schedule_id}",
    summary="Update schedule",
    responses={404: {"description": "Schedule not found"}, 422: {"description": "Invalid schedule"}},
)
async def update_schedule(
    schedule_id: str,
    request: ScheduleUpdateRequest,
    store: JobStore = Depends(get_store),
) -> dict:
    entry = await _require_schedule(store, schedule_id)
    changes = request.model_dump(exclude_unset=True)

    recurrence_changed = False
    for field_name in ("schedule_type", "time_of_day", "timezone"):
        if changes.get(field_name) is not None:
            setattr(entry, field_name, changes[field_name])
            recurrence_changed = True
    if "end_date" in changes:
        entry.end_date = changes["end_date"]
        if entry.end_date is not None and entry.end_date < entry.start_date:
            raise HTTPException(status_code=422, detail="end_date is before start_date")
    if request.job is not None:
        entry.job_template = request.job.model_dump()

    now = datetime.now(timezone.utc)
    if changes.get("active") is not None:
        reactivated = changes["active"] and not entry.active
        entry.active = changes["active"]
        if reactivated:
            entry.fail_count = 0
            recurrence_changed = True

    if recurrence_changed:
        entry.next_run = initial_next_run(
            entry.schedule_type, entry.time_of_day, entry.timezone, entry.start_date, now
        )

    await store.save_schedule(entry)
    return entry.to_dict()


@router.delete(
    "/api/schedules/{schedule_id}",
    summary="Delete schedule",
    response_model=MessageResponse,
    responses={404: {"description": "Schedule not found"}},
)
async def delete_schedule(schedule_id: str, store: JobStore = Depends(get_store)) -> dict:
    if not await store.delete_schedule(schedule_id):
        raise HTTPException(status_code=404, detail="Schedule not found")
    return {"message": f"Schedule {schedule_id} deleted"}
