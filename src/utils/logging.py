"""Structured logging configuration for trendshorts.

Uses structlog for structured, JSON-capable logging. Every log line emitted
while a generation job runs carries its job_id (and schedule_id when the job
came from the scheduler), including lines from plain ``logging`` loggers.
"""

import logging
import sys
from contextvars import ContextVar

import structlog

# Correlation ids for the job currently running in this task
current_job_id: ContextVar[str | None] = ContextVar("current_job_id", default=None)
current_schedule_id: ContextVar[str | None] = ContextVar("current_schedule_id", default=None)

NOISY_LOGGERS = (
    "httpx",
    "httpcore",
    "google_genai",
    "google_genai.models",
    "googleapiclient.discovery_cache",
    "aiosqlite",
    "PIL",
)


def add_job_context(_logger, _method_name, event_dict):
    """Structlog processor injecting job/schedule correlation ids."""
    job_id = current_job_id.get()
    if job_id:
        event_dict["job_id"] = job_id
    schedule_id = current_schedule_id.get()
    if schedule_id:
        event_dict["schedule_id"] = schedule_id
    return event_dict


def setup_logging(log_level: str = "INFO", json_output: bool = False) -> None:
    """Configure structlog and route stdlib logging through it.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        json_output: Emit JSON lines (production) instead of colored console output
    """
    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        add_job_context,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if json_output:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=True)

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    # foreign_pre_chain lets plain logging.getLogger() records pick up job ids too
    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(console_handler)
    root_logger.setLevel(getattr(logging, log_level.upper()))

    for logger_name in NOISY_LOGGERS:
        logging.getLogger(logger_name).setLevel(logging.WARNING)


def set_job_context(job_id: str, schedule_id: str | None = None) -> None:
    """Set correlation ids for all subsequent log lines in this context."""
    current_job_id.set(job_id)
    current_schedule_id.set(schedule_id)


def clear_job_context() -> None:
    """Clear the current job context."""
    current_job_id.set(None)
    current_schedule_id.set(None)
