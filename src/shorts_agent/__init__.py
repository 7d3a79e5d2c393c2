"""Shorts Agent - trend-driven short-video generation pipeline."""

from .context import JobContext
from .timing_planner import plan_segments, rebalance
from .asset_resolver import AssetResolver, SourceHints, resolve_candidates
from .clip_generator import ClipGenerationError, ClipGenerator, ClipTimeoutError
from .clip_qa import ClipStillQA
from .audio_aligner import AudioSynthesizer, SynthesisError, VoiceConfig, fit_to_duration
from .media_assembler import AssemblyError, MediaAssembler
from .script_writer import PlanningError, ScriptWriter
from .phase_events import PhaseEventStream, PhaseOrderError, PhaseStreamRegistry
from .scheduler import SchedulePoller, compute_next_run, initial_next_run
from .job_queue import JobQueue
from .agent import ShortsProductionAgent

__all__ = [
    "JobContext",
    "plan_segments",
    "rebalance",
    "AssetResolver",
    "SourceHints",
    "resolve_candidates",
    "ClipGenerator",
    "ClipGenerationError",
    "ClipTimeoutError",
    "ClipStillQA",
    "AudioSynthesizer",
    "SynthesisError",
    "VoiceConfig",
    "fit_to_duration",
    "MediaAssembler",
    "AssemblyError",
    "ScriptWriter",
    "PlanningError",
    "PhaseEventStream",
    "PhaseOrderError",
    "PhaseStreamRegistry",
    "SchedulePoller",
    "compute_next_run",
    "initial_next_run",
    "JobQueue",
    "ShortsProductionAgent",
]
