"""Configuration loading and validation for trendshorts."""

import logging
import os
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv
from rich.logging import RichHandler

# Get the project root directory (parent of src)
PROJECT_ROOT = Path(__file__).parent.parent.parent

# Load environment variables from .env file in project root
load_dotenv(PROJECT_ROOT / ".env")

BUDGET_TIERS = ("economy", "balanced", "premium")


def load_config() -> dict:
    """Load configuration from environment variables."""

    # Helper function to resolve paths relative to project root
    def resolve_path(path: str | None, default_relative: str) -> str:
        if not path:
            return str(PROJECT_ROOT / default_relative)
        if Path(path).is_absolute():
            return path
        return str(PROJECT_ROOT / path)

    config = {
        # LLM (script, SEO text)
        "gemini_api_key": os.getenv("GEMINI_API_KEY"),
        "gemini_model": os.getenv("GEMINI_MODEL", "gemini-2.5-flash"),
        # Narration providers
        "elevenlabs_api_key": os.getenv("ELEVENLABS_API_KEY"),
        "openai_api_key": os.getenv("OPENAI_API_KEY"),
        # Generative video provider
        "runway_api_key": os.getenv("RUNWAY_API_KEY"),
        "runway_api_url": os.getenv("RUNWAY_API_URL", "https://api.dev.runwayml.com/v1"),
        # Trend stories and image search
        "trends_api_url": os.getenv("TRENDS_API_URL", "http://localhost:8102/api/google-trends"),
        "serpapi_key": os.getenv("SERPAPI_KEY"),
        # Image CDN transform
        "cloudinary_cloud_name": os.getenv("CLOUDINARY_CLOUD_NAME"),
        "cloudinary_api_key": os.getenv("CLOUDINARY_API_KEY"),
        "cloudinary_api_secret": os.getenv("CLOUDINARY_API_SECRET"),
        # Background music
        "jamendo_client_id": os.getenv("JAMENDO_CLIENT_ID"),
        # Publishing (OAuth token material for the video host)
        "youtube_client_id": os.getenv("YOUTUBE_CLIENT_ID"),
        "youtube_client_secret": os.getenv("YOUTUBE_CLIENT_SECRET"),
        "youtube_refresh_token": os.getenv("YOUTUBE_REFRESH_TOKEN"),
        # Output and persistence
        "local_output_folder": resolve_path(os.getenv("LOCAL_OUTPUT_FOLDER"), "output"),
        "job_db_path": resolve_path(os.getenv("JOB_DB_PATH"), ".trendshorts/jobs.db"),
        "job_retention_days": int(os.getenv("JOB_RETENTION_DAYS", "7")),
        # Scheduler
        "scheduler_enabled": os.getenv("SCHEDULER_ENABLED", "true").lower() == "true",
        "scheduler_timezone": os.getenv("SCHEDULER_TIMEZONE", "America/Los_Angeles"),
        "scheduler_poll_seconds": int(os.getenv("SCHEDULER_POLL_SECONDS", "60")),
        # Intra-job parallelism (respect provider rate limits)
        "clip_parallelism": int(os.getenv("CLIP_PARALLELISM", "3")),
        "asset_parallelism": int(os.getenv("ASSET_PARALLELISM", "4")),
        # Generative video polling
        "poll_interval_seconds": float(os.getenv("POLL_INTERVAL_SECONDS", "2")),
        "max_poll_attempts": int(os.getenv("MAX_POLL_ATTEMPTS", "180")),
        # Cost control: how many segments may use the alternate generative path
        "budget_tier": os.getenv("BUDGET_TIER", "balanced"),
        # Assets
        "max_images": int(os.getenv("MAX_IMAGES", "8")),
        # Still-frame QA of generated clips; Top 5 rank caption font
        "clip_qa_enabled": os.getenv("CLIP_QA_ENABLED", "true").lower() == "true",
        "overlay_font_path": os.getenv("OVERLAY_FONT_PATH", ""),
        # Logging
        "log_level": os.getenv("LOG_LEVEL", "INFO"),
        "log_json": os.getenv("LOG_JSON", "false").lower() == "true",
    }

    return config


def validate_config(config: dict) -> list[str]:
    """Validate configuration and return list of errors."""
    errors = []

    # Script writing is the one hard requirement; every other provider degrades
    if not config.get("gemini_api_key"):
        errors.append("GEMINI_API_KEY is required")

    if not (config.get("elevenlabs_api_key") or config.get("openai_api_key")):
        errors.append(
            "At least one narration provider required: ELEVENLABS_API_KEY or OPENAI_API_KEY"
        )

    try:
        ZoneInfo(config.get("scheduler_timezone") or "")
    except (ZoneInfoNotFoundError, ValueError):
        errors.append(f"Unknown SCHEDULER_TIMEZONE: {config.get('scheduler_timezone')}")

    if config.get("budget_tier") not in BUDGET_TIERS:
        errors.append(f"BUDGET_TIER must be one of {', '.join(BUDGET_TIERS)}")

    if config.get("clip_parallelism", 1) < 1:
        errors.append("CLIP_PARALLELISM must be at least 1")

    if config.get("scheduler_poll_seconds", 60) < 1:
        errors.append("SCHEDULER_POLL_SECONDS must be at least 1")

    output_folder = config.get("local_output_folder")
    if output_folder:
        try:
            Path(output_folder).mkdir(parents=True, exist_ok=True)
        except Exception as e:
            errors.append(f"Cannot create local output folder: {e}")

    return errors


def setup_logging(log_level: str = "INFO") -> None:
    """Set up logging configuration with Rich for terminal output."""
    # Clear any existing handlers
    logging.root.handlers.clear()

    rich_handler = RichHandler(
        show_time=True,
        show_level=True,
        show_path=False,
        rich_tracebacks=True,
        markup=False,  # Disable markup to avoid conflicts
    )

    # File handler for plain text logging
    log_file = PROJECT_ROOT / "trendshorts.log"
    file_handler = logging.FileHandler(log_file)
    file_handler.setFormatter(
        logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    )

    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        handlers=[rich_handler, file_handler],
        format="%(message)s",
    )

    # Suppress noisy third-party loggers
    noisy_loggers = [
        "httpx",
        "google_genai",
        "google_genai.models",
        "googleapiclient.discovery_cache",
        "aiosqlite",
        "PIL",
    ]

    for logger_name in noisy_loggers:
        logging.getLogger(logger_name).setLevel(logging.WARNING)
