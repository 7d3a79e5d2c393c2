"""Ordered phase-event stream for job progress.

One ``PhaseEventStream`` per job. Events are appended to a history and fanned
out to listeners (WebSocket broadcast, persistence) and to any number of SSE
consumers. Ordered phases may repeat but never go backwards; nothing may
follow COMPLETED or ERROR.
"""

import asyncio
import logging
import time
from typing import Any, AsyncIterator, Awaitable, Callable

from models.events import PHASE_ORDER, Phase, PhaseEvent

logger = logging.getLogger(__name__)

Listener = Callable[[PhaseEvent], Awaitable[None]]


class PhaseOrderError(Exception):
    """An emitted phase would break the stream ordering."""

    pass


def to_sse(event: PhaseEvent) -> str:
    return event.to_sse()


class PhaseEventStream:
    """Append-only progress stream for one job."""

    def __init__(self, job_id: str = ""):
        self.job_id = job_id
        self.history: list[PhaseEvent] = []
        self._listeners: list[Listener] = []
        self._queues: list[asyncio.Queue] = []
        self._last_rank = -1

    @property
    def closed(self) -> bool:
        return bool(self.history) and self.history[-1].phase.is_terminal

    @property
    def current_phase(self) -> Phase | None:
        for event in reversed(self.history):
            if event.phase != Phase.FALLBACK:
                return event.phase
        return None

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def history_dicts(self) -> list[dict[str, Any]]:
        return [e.to_dict() for e in self.history]

    async def emit(self, phase: Phase | str, **payload: Any) -> PhaseEvent:
        """Append an event and notify listeners.

        Raises:
            PhaseOrderError: If the stream already ended, or an ordered
                phase precedes the latest one
        """
        phase = Phase(phase)
        if self.closed:
            raise PhaseOrderError(
                f"Cannot emit {phase.value} after {self.history[-1].phase.value}"
            )

        if phase in PHASE_ORDER:
            rank = PHASE_ORDER[phase]
            if rank < self._last_rank:
                raise PhaseOrderError(
                    f"Phase {phase.value} cannot follow {self.current_phase.value}"
                )
            self._last_rank = rank

        if phase == Phase.COMPLETED:
            payload["phases"] = self.history_dicts()
        elif phase == Phase.ERROR:
            payload["msg"] = str(payload.get("msg") or "Unknown error")
            payload["phases"] = self.history_dicts()

        event = PhaseEvent(phase=phase, payload=payload)
        self.history.append(event)

        for queue in list(self._queues):
            queue.put_nowait(event)

        for listener in list(self._listeners):
            try:
                await listener(event)
            except Exception as e:
                # A broken consumer must not fail the job
                logger.warning(f"Phase listener failed for job {self.job_id}: {e}")

        return event

    async def fallback(self, segment: int, tier: str, reason: str) -> PhaseEvent:
        """Record that a segment dropped a generation tier."""
        return await self.emit(Phase.FALLBACK, segment=segment, tier=tier, reason=reason)

    async def events(self) -> AsyncIterator[PhaseEvent]:
        """Replay the history, then follow live events until a terminal one."""
        queue: asyncio.Queue = asyncio.Queue()
        replay = list(self.history)
        self._queues.append(queue)
        try:
            for event in replay:
                yield event
                if event.phase.is_terminal:
                    return
            while True:
                event = await queue.get()
                yield event
                if event.phase.is_terminal:
                    return
        finally:
            self._queues.remove(queue)

    async def sse_iter(self) -> AsyncIterator[str]:
        """Server-sent-events rendering of ``events()``."""
        async for event in self.events():
            yield to_sse(event)


class PhaseStreamRegistry:
    """In-process lookup of live streams by job id.

    Streams of finished jobs stay readable for ``retention_seconds`` so late
    SSE clients can replay them, then they are dropped on the next lookup.
    """

    def __init__(self, retention_seconds: float = 300.0) -> None:
        self.retention_seconds = retention_seconds
        self._streams: dict[str, PhaseEventStream] = {}
        self._finished_at: dict[str, float] = {}

    def get(self, job_id: str) -> PhaseEventStream | None:
        self.prune()
        return self._streams.get(job_id)

    def get_or_create(self, job_id: str) -> PhaseEventStream:
        self.prune()
        if job_id not in self._streams:
            self._streams[job_id] = PhaseEventStream(job_id)
        return self._streams[job_id]

    def discard(self, job_id: str) -> None:
        self._streams.pop(job_id, None)
        self._finished_at.pop(job_id, None)

    def mark_finished(self, job_id: str, now: float | None = None) -> None:
        """Start the retention clock for a job whose run has ended."""
        if job_id in self._streams:
            self._finished_at[job_id] = time.monotonic() if now is None else now

    def prune(self, now: float | None = None) -> int:
        """Drop finished streams older than the retention window."""
        now = time.monotonic() if now is None else now
        expired = [
            job_id
            for job_id, finished in self._finished_at.items()
            if now - finished >= self.retention_seconds
        ]
        for job_id in expired:
            self.discard(job_id)
        return len(expired)

    def __len__(self) -> int:
        return len(self._streams)
