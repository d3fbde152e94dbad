"""Discovery stage: walk a channel catalog one page per run."""

from datetime import datetime

from src.utils.logging import get_logger

from .catalog_service import CatalogService
from .config import PipelineConfig
from .job_store import JobStore
from .schemas import (
    DiscoveryResult,
    DiscoveryStatus,
    ExtractionPayload,
    JobType,
    VideoInfo,
)
from .storage_service import StorageService

logger = get_logger(__name__)


def extraction_key(video_id: str) -> str:
    """Idempotency key of the extraction job for a video."""
    return f"extraction:{video_id}"


class DiscoveryStage:
    """Turns catalog pages into video rows and extraction jobs.

    The persona's continuation token is only advanced after the page has been
    fetched and its videos and jobs written, so a failure at any point leaves
    the next run starting from the same page.
    """

    def __init__(
        self,
        config: PipelineConfig,
        storage: StorageService,
        job_store: JobStore,
        catalog: CatalogService,
    ):
        self.config = config
        self.storage = storage
        self.job_store = job_store
        self.catalog = catalog

    async def discover(
        self,
        persona_id: str,
        channel_id: str,
        stop_at: datetime | None = None,
    ) -> DiscoveryResult:
        """Fetch the next catalog page for a persona and ingest it.

        Args:
            persona_id: Persona whose cursor is advanced.
            channel_id: Channel to list.
            stop_at: Bounded mode. Videos published at or before this time
                are ignored and end the walk.

        Returns:
            DiscoveryResult with counts, the new cursor and whether more
            pages remain.

        Raises:
            NotFoundError: If the persona or channel does not exist.
            Exception: Catalog and storage errors propagate unchanged.
        """
        persona = await self.storage.get_persona(persona_id)
        logger.info(
            "discovery_started",
            persona_id=persona_id,
            channel_id=channel_id,
            cursor=persona.continuation_token,
            bounded=stop_at is not None,
        )

        page = await self.catalog.list_videos(channel_id, persona.continuation_token)
        videos, reached_stop = self._apply_stop(page.items, stop_at)
        has_more = page.has_more and not reached_stop

        inserted = await self.storage.insert_new_videos(persona_id, videos)

        jobs_enqueued = 0
        for video in videos:
            job_id = await self.job_store.enqueue_once(
                JobType.EXTRACTION,
                ExtractionPayload(persona_id=persona_id, video_id=video.video_id).model_dump(),
                idempotency_key=extraction_key(video.video_id),
                max_retries=self.config.extraction_max_retries,
            )
            if job_id is not None:
                jobs_enqueued += 1

        next_token = page.next_cursor if has_more else None
        video_count = await self.storage.count_videos(persona_id)
        await self.storage.update_persona_discovery(
            persona_id,
            continuation_token=next_token,
            discovery_status=(
                DiscoveryStatus.IN_PROGRESS if has_more else DiscoveryStatus.COMPLETED
            ),
            video_count=video_count,
        )

        result = DiscoveryResult(
            videos_found=len(videos),
            videos_inserted=len(inserted),
            jobs_enqueued=jobs_enqueued,
            has_more=has_more,
            continuation_token=next_token,
        )
        logger.info("discovery_completed", persona_id=persona_id, **result.model_dump())
        return result

    @staticmethod
    def _apply_stop(
        videos: list[VideoInfo], stop_at: datetime | None
    ) -> tuple[list[VideoInfo], bool]:
        """Cut the page at the first video published at or before ``stop_at``."""
        if stop_at is None:
            return videos, False

        kept: list[VideoInfo] = []
        for video in videos:
            if video.published_at is not None and video.published_at <= stop_at:
                return kept, True
            kept.append(video)
        return kept, False
