"""Command-line entry point for trendshorts: generate one short or run the API server."""

import argparse
import asyncio
import logging
import sys

from tqdm import tqdm

from models.events import Phase, PhaseEvent
from models.job import GenerationJob
from shorts_agent.agent import ShortsProductionAgent
from shorts_agent.phase_events import PhaseEventStream
from utils.config import load_config, setup_logging, validate_config

logger = logging.getLogger(__name__)


class PhaseProgressBar:
    """Renders a job's phase events as a tqdm progress bar."""

    def __init__(self):
        self.bar: tqdm | None = None

    async def __call__(self, event: PhaseEvent) -> None:
        extra = event.payload
        if event.phase == Phase.GENERATING_CLIPS:
            if self.bar is None:
                self.bar = tqdm(total=extra.get("total", 0), desc="Segments", unit="seg", leave=True)
            self.bar.n = extra.get("done", 0)
            self.bar.refresh()
        elif event.phase == Phase.FALLBACK:
            tqdm.write(f"  segment {extra.get('segment')}: fell back past {extra.get('tier')} ({extra.get('reason')})")
        else:
            tqdm.write(f"[{event.phase.value}] {extra}" if extra else f"[{event.phase.value}]")

    def close(self) -> None:
        if self.bar is not None:
            self.bar.close()


async def generate(args: argparse.Namespace) -> int:
    config = load_config()
    errors = validate_config(config)
    for error in errors:
        logger.warning(f"Config: {error}")

    job = GenerationJob(
        category=args.category,
        duration=args.duration,
        aspect_ratio=args.aspect_ratio,
        language=args.language,
        country=args.country,
        topic=args.topic or "",
        publish=args.publish,
    )

    events = PhaseEventStream(job.id)
    progress = PhaseProgressBar()
    events.add_listener(progress)

    agent = ShortsProductionAgent(config)
    try:
        result = await agent.produce(job, events)
    except Exception as e:
        logger.error(f"Generation failed: {e}")
        return 1
    finally:
        progress.close()
        await agent.close()

    print(f"\nVideo: {result.video_path}")
    print(f"Title: {result.title}")
    if result.public_url:
        print(f"Published: {result.public_url}")
    return 0


def serve(args: argparse.Namespace) -> int:
    import uvicorn

    from api.server import app

    uvicorn.run(app, host=args.host, port=args.port, log_level="info")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="trendshorts", description="Trend-driven short video generator")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    gen = sub.add_parser("generate", help="Generate one short and exit")
    gen.add_argument("--category", default="Standard")
    gen.add_argument("--duration", type=int, default=30, help="Seconds, multiple of 5 from 5 to 90")
    gen.add_argument("--aspect-ratio", default="720:1280")
    gen.add_argument("--language", default="English")
    gen.add_argument("--country", default="US")
    gen.add_argument("--topic", help="Skip trend discovery and use this topic")
    gen.add_argument("--publish", action="store_true", help="Upload the finished short")

    srv = sub.add_parser("serve", help="Run the API server")
    srv.add_argument("--host", default="0.0.0.0")
    srv.add_argument("--port", type=int, default=8000)
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    if args.command == "serve":
        return serve(args)

    setup_logging("DEBUG" if args.verbose else "INFO")
    try:
        return asyncio.run(generate(args))
    except ValueError as e:
        logger.error(str(e))
        return 2
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return 130


if __name__ == "__main__":
    sys.exit(main())
