"""Command-line interface for running the content pipeline."""

import argparse
import asyncio
from datetime import datetime

from src.utils.clients import get_clients
from src.utils.logging import get_logger

from .config import get_config
from .errors import JobDeferred
from .pipeline import ContentPipeline
from .scheduler import TickStatus
from .schemas import DiscoveryPayload, ExtractionPayload

logger = get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Content Pipeline - Discover videos, extract captions and embed them",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run one scheduler tick (cron target)
  python -m src.pipeline.cli tick

  # Keep processing jobs until interrupted
  python -m src.pipeline.cli worker --interval 10

  # Walk one catalog page for a persona right now
  python -m src.pipeline.cli discover <persona-id>

  # Extract captions for a single video, discarding any previous run
  python -m src.pipeline.cli extract <persona-id> <video-id> --restart

  # Embed every pending caption chunk of a persona
  python -m src.pipeline.cli embed <persona-id> --drain
        """,
    )
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("tick", help="Process at most one due job")

    worker = commands.add_parser("worker", help="Run scheduler ticks in a loop")
    worker.add_argument(
        "--interval",
        type=float,
        help="Seconds to sleep when the queue is idle (default from config)",
    )

    discover = commands.add_parser("discover", help="Fetch one catalog page")
    discover.add_argument("persona_id")
    discover.add_argument(
        "--stop-at",
        type=datetime.fromisoformat,
        help="Bounded mode: stop at videos published at or before this ISO timestamp",
    )
    discover.add_argument(
        "--priority",
        action="store_true",
        help="Enqueue a priority discovery job instead of running inline",
    )

    extract = commands.add_parser("extract", help="Extract captions for one video")
    extract.add_argument("persona_id")
    extract.add_argument("video_id")
    extract.add_argument("--restart", action="store_true", help="Start a fresh caption run")

    embed = commands.add_parser("embed", help="Embed pending caption chunks")
    embed.add_argument("persona_id")
    embed.add_argument("--video-id", help="Restrict to one video")
    embed.add_argument("--drain", action="store_true", help="Repeat until nothing remains")

    return parser


async def run_worker(pipeline: ContentPipeline, interval: float) -> None:
    """Tick forever, sleeping only when the queue is idle."""
    print(f"Worker started (idle interval {interval}s). Press Ctrl+C to stop.")
    while True:
        outcome = await pipeline.tick()
        if outcome.status == TickStatus.IDLE:
            await asyncio.sleep(interval)
            continue
        print(f"  {outcome.status}: {outcome.job_type} job {outcome.job_id}")


async def main() -> None:
    """CLI entry point for the content pipeline.

    Parses arguments, builds the pipeline around shared clients, runs the
    requested command and prints a summary.
    """
    args = build_parser().parse_args()

    config = get_config()
    pipeline = ContentPipeline.from_clients(config, get_clients(config))

    logger.info("cli_started", command=args.command)

    print("\n" + "=" * 60)
    print(f"Content Pipeline: {args.command}")
    print("=" * 60)

    try:
        if args.command == "tick":
            outcome = await pipeline.tick()
            print(f"Tick status: {outcome.status}")
            if outcome.job_id:
                print(f"Job: {outcome.job_type} {outcome.job_id}")
            if outcome.error:
                print(f"Error: {outcome.error}")

        elif args.command == "worker":
            await run_worker(pipeline, args.interval or config.worker_interval_seconds)

        elif args.command == "discover":
            if args.priority:
                job_id = await pipeline.request_discovery(args.persona_id, priority=True)
                print(f"Priority discovery job enqueued: {job_id}")
            else:
                persona = await pipeline.storage.get_persona(args.persona_id)
                result = await pipeline.handle_discovery(
                    DiscoveryPayload(
                        persona_id=persona.id,
                        channel_id=persona.channel_id,
                        stop_at=args.stop_at,
                    )
                )
                print(f"Videos found: {result.videos_found}")
                print(f"New videos: {result.videos_inserted}")
                print(f"Extraction jobs enqueued: {result.jobs_enqueued}")
                print(f"More pages: {'yes' if result.has_more else 'no'}")

        elif args.command == "extract":
            try:
                result = await pipeline.handle_extraction(
                    ExtractionPayload(
                        persona_id=args.persona_id, video_id=args.video_id, restart=args.restart
                    )
                )
            except JobDeferred as e:
                print(f"Still processing: {e.reason}")
                print(f"Run the command again in about {e.delay_seconds:.0f}s")
                return
            print(f"Run: {result.run_id}")
            print(f"Caption chunks: {result.captions_extracted}")
            print(f"Replaced stored captions: {'yes' if result.replaced else 'no'}")

        elif args.command == "embed":
            if args.drain:
                result = await pipeline.embedding.drain(args.persona_id, args.video_id)
            else:
                result = await pipeline.embedding.embed_batch(args.persona_id, args.video_id)
            print(f"Candidates: {result.total_candidates}")
            print(f"Embedded: {result.processed}")
            print(f"Failed: {result.failed}")
            print(f"Completed videos: {len(result.completed_videos)}")

    except KeyboardInterrupt:
        print("\nStopped.")
        return
    except Exception as e:
        logger.exception("cli_command_failed", command=args.command, error_type=type(e).__name__)
        print(f"\n❌ {args.command} failed: {str(e)}")
        return

    print("=" * 60 + "\n")
    logger.info("cli_completed", command=args.command)


if __name__ == "__main__":
    asyncio.run(main())
