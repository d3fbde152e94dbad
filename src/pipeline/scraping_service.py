"""Scraping service driving Supadata transcript batch jobs."""

import asyncio
from typing import Any

from supadata import Supadata

from src.utils.logging import get_logger

from .config import PipelineConfig
from .errors import ScrapeRunFailedError
from .schemas import CaptionSegment

logger = get_logger(__name__)

# Batch job states that mean "ask again later"
PENDING_STATES = {"queued", "active", "pending", "running"}


class ScrapingService:
    """Service for long-running scrape-and-transcribe runs.

    A run is started once per video and polled on later scheduler ticks,
    so no call here ever blocks waiting for the transcript.
    """

    def __init__(self, config: PipelineConfig, client: Supadata | None = None):
        """Initialize scraping service with configuration.

        Args:
            config: Configuration object with the Supadata API key.
            client: Shared Supadata client (built from config when omitted).
        """
        self.config = config
        self.client = client or Supadata(api_key=config.supadata_api_key)
        logger.info(
            "scraping_service_initialized",
            api_key_present=bool(config.supadata_api_key),
        )

    async def start_run(self, video_id: str) -> str:
        """Start a transcript run for one video.

        Returns:
            The external run id.
        """
        try:
            job = await asyncio.to_thread(
                self.client.youtube.transcript.batch,
                video_ids=[video_id],
                lang=self.config.caption_lang,
            )
            logger.info("scrape_run_started", video_id=video_id, run_id=job.job_id)
            return str(job.job_id)

        except Exception as e:
            logger.exception(
                "scrape_run_start_failed",
                video_id=video_id,
                error_type=type(e).__name__,
            )
            raise

    async def fetch_results(self, run_id: str) -> list[CaptionSegment] | None:
        """Fetch the segments produced by a run.

        Returns:
            The run's timed segments (possibly empty when no captions were
            available), or None while the run is still in progress.

        Raises:
            ScrapeRunFailedError: If the run itself failed.
        """
        results = await asyncio.to_thread(
            self.client.youtube.batch.get_batch_results, job_id=run_id
        )
        status = str(getattr(results, "status", "")).lower()

        if status in PENDING_STATES:
            logger.info("scrape_run_pending", run_id=run_id, status=status)
            return None
        if status == "failed":
            logger.warning("scrape_run_failed", run_id=run_id)
            raise ScrapeRunFailedError(f"Caption run {run_id} failed")

        segments: list[CaptionSegment] = []
        for item in getattr(results, "results", None) or []:
            transcript = getattr(item, "transcript", None)
            if transcript is None:
                logger.warning(
                    "scrape_item_without_transcript",
                    run_id=run_id,
                    error_code=getattr(item, "error_code", None),
                )
                continue
            segments.extend(_to_segments(transcript.content))

        logger.info("scrape_run_fetched", run_id=run_id, segments=len(segments))
        return segments


def _to_segments(content: Any) -> list[CaptionSegment]:
    """Convert Supadata transcript chunks (milliseconds) into segments (seconds)."""
    if isinstance(content, str):
        # Plain-text transcripts carry no timing; keep them as a single segment
        return [CaptionSegment(start=0, duration=0, text=content)] if content.strip() else []

    return [
        CaptionSegment(
            start=float(chunk.offset) / 1000,
            duration=float(chunk.duration) / 1000,
            text=chunk.text,
        )
        for chunk in content
        if chunk.text and chunk.text.strip()
    ]
