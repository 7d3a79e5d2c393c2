"""Service singletons and dependency injection for the trendshorts API."""

import logging

from api.job_store import JobStore, close_job_store, get_job_store
from api.websocket_manager import WebSocketManager
from models.events import PhaseEvent
from models.job import GenerationJob, JobResult
from shorts_agent.agent import ShortsProductionAgent
from shorts_agent.job_queue import JobQueue
from shorts_agent.phase_events import PhaseStreamRegistry
from shorts_agent.scheduler import SchedulePoller
from utils.config import load_config

logger = logging.getLogger(__name__)

# Service singletons
_config: dict | None = None
_store: JobStore | None = None
_agent: ShortsProductionAgent | None = None
_queue: JobQueue | None = None
_poller: SchedulePoller | None = None
_streams = PhaseStreamRegistry()
_ws_manager = WebSocketManager()


def get_config() -> dict:
    """Get or load the configuration."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def get_store() -> JobStore:
    """Get the connected job store."""
    if _store is None:
        raise RuntimeError("Services not initialized. Call init_services() first.")
    return _store


def get_stream_registry() -> PhaseStreamRegistry:
    return _streams


def get_ws_manager() -> WebSocketManager:
    return _ws_manager


def get_agent() -> ShortsProductionAgent:
    """Get or create the production agent."""
    global _agent
    if _agent is None:
        _agent = ShortsProductionAgent(get_config(), store=_store)
    return _agent


async def run_job(job: GenerationJob) -> JobResult:
    """Queue runner: produce one job, mirroring its phase events to WebSocket clients."""
    stream = _streams.get_or_create(job.id)

    async def forward(event: PhaseEvent) -> None:
        await _ws_manager.broadcast(job.id, event.to_dict())

    stream.add_listener(forward)
    try:
        return await get_agent().produce(job, stream)
    finally:
        stream.remove_listener(forward)
        _streams.mark_finished(job.id)


def get_job_queue() -> JobQueue:
    """Get or create the single-worker job queue."""
    global _queue
    if _queue is None:
        _queue = JobQueue(run_job)
    return _queue


def get_poller() -> SchedulePoller | None:
    return _poller


async def init_services() -> None:
    """Connect the store and start the schedule poller (server startup)."""
    global _store, _poller
    config = get_config()
    _store = await get_job_store(config["job_db_path"])
    removed = await _store.cleanup_old_jobs(config.get("job_retention_days", 7))
    if removed:
        logger.info(f"Removed {removed} finished jobs past retention")
    if config.get("scheduler_enabled", True):
        _poller = SchedulePoller(
            _store, get_job_queue(), poll_seconds=config.get("scheduler_poll_seconds", 60)
        )
        _poller.start()


async def shutdown_services() -> None:
    """Stop the poller, close provider clients and the store (server shutdown)."""
    global _store, _agent, _poller
    if _poller is not None:
        await _poller.stop()
        _poller = None
    if _agent is not None:
        await _agent.close()
        _agent = None
    await close_job_store()
    _store = None
