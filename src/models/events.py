"""Phase event model for pipeline progress reporting."""

import json
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class Phase(str, Enum):
    """Pipeline phases in emission order.

    ERROR and FALLBACK are outside the ordering: ERROR may follow any phase,
    FALLBACK is informational and may repeat.
    """

    INIT = "INIT"
    GENERATING_CLIPS = "GENERATING_CLIPS"
    ASSEMBLING_VIDEO = "ASSEMBLING_VIDEO"
    ADDING_VOICE_MUSIC = "ADDING_VOICE_MUSIC"
    SYNCING_VOICE_MUSIC = "SYNCING_VOICE_MUSIC"
    VIDEO_UPLOADED = "VIDEO_UPLOADED"
    VIDEO_SCHEDULED = "VIDEO_SCHEDULED"
    COMPLETED = "COMPLETED"
    ERROR = "ERROR"
    FALLBACK = "FALLBACK"

    @property
    def is_terminal(self) -> bool:
        return self in (Phase.COMPLETED, Phase.ERROR)


PHASE_ORDER: dict[Phase, int] = {
    phase: rank
    for rank, phase in enumerate(
        [
            Phase.INIT,
            Phase.GENERATING_CLIPS,
            Phase.ASSEMBLING_VIDEO,
            Phase.ADDING_VOICE_MUSIC,
            Phase.SYNCING_VOICE_MUSIC,
            Phase.VIDEO_UPLOADED,
            Phase.VIDEO_SCHEDULED,
            Phase.COMPLETED,
        ]
    )
}


@dataclass
class PhaseEvent:
    """One entry of the append-only progress stream."""

    phase: Phase
    payload: dict[str, Any] = field(default_factory=dict)
    ts: float = field(default_factory=lambda: time.time() * 1000)

    def to_dict(self) -> dict[str, Any]:
        return {"phase": self.phase.value, "ts": int(self.ts), "extra": self.payload}

    def to_sse(self) -> str:
        """Render as a server-sent-events data line."""
        return f"data: {json.dumps(self.to_dict(), default=str)}\n\n"
