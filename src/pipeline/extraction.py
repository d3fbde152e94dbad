"""Extraction stage: drive a video's caption run to completion.

Video caption states::

    pending --(run started)--> processing --(transcript ready)--> extracted
    extracted --(all chunks embedded)--> completed     (embedding stage)
    any --(error or run timeout)--> failed --(retry)--> processing
"""

from datetime import UTC, datetime, timedelta

from src.utils.logging import get_logger

from .chunking_service import ChunkingService
from .config import PipelineConfig
from .errors import ExtractionPending, PartialDataError, ScrapeRunFailedError
from .schemas import CaptionsStatus, ExtractionResult, Video
from .scraping_service import ScrapingService
from .storage_service import StorageService
from .vector_store import VectorStore

logger = get_logger(__name__)


class ExtractionStage:
    """Starts or resumes a video's external caption run and stores its chunks.

    The run id is persisted as soon as the run starts, so every later call
    resumes the same run instead of starting a duplicate. Waiting for the run
    is never a blocking loop: while results are pending the stage raises
    ``ExtractionPending`` and the scheduler re-enters it on a later tick. A
    run still pending after ``extraction_run_timeout_seconds`` is abandoned
    and handled like a failed run.
    """

    def __init__(
        self,
        config: PipelineConfig,
        storage: StorageService,
        scraper: ScrapingService,
        chunker: ChunkingService,
        vector_store: VectorStore,
    ):
        self.config = config
        self.storage = storage
        self.scraper = scraper
        self.chunker = chunker
        self.vector_store = vector_store

    async def extract(
        self, persona_id: str, video_id: str, restart: bool = False
    ) -> ExtractionResult:
        """Extract captions for one video.

        Args:
            persona_id: Persona owning the video.
            video_id: External video id.
            restart: Discard any stored run and start a fresh one.

        Returns:
            ExtractionResult describing what was stored.

        Raises:
            NotFoundError: If the video does not exist.
            ExtractionPending: If the external run has not finished yet.
            ScrapeRunFailedError: If the run failed or timed out.
            PartialDataError: If the run produced no usable captions.
            Exception: Any other failure, after the video is marked failed.
        """
        video = await self.storage.get_video(video_id)
        run_id = None if restart else video.external_run_id
        resuming = run_id is not None

        logger.info(
            "extraction_started",
            video_id=video_id,
            status=str(video.captions_status),
            resuming=resuming,
            restart=restart,
        )

        try:
            if run_id is None:
                run_id = await self.scraper.start_run(video_id)
                await self.storage.start_video_run(video_id, run_id)
            elif video.captions_status in (CaptionsStatus.PENDING, CaptionsStatus.FAILED):
                await self.storage.update_video_status(video_id, CaptionsStatus.PROCESSING)

            segments = await self.scraper.fetch_results(run_id)
            if segments is None:
                if resuming and self._run_timed_out(video):
                    raise ScrapeRunFailedError(
                        f"Caption run {run_id} still pending after "
                        f"{self.config.extraction_run_timeout_seconds}s"
                    )
                raise ExtractionPending(
                    f"Caption run {run_id} still in progress",
                    delay_seconds=self.config.extraction_poll_seconds,
                    progress=50,
                )

            chunks = self.chunker.chunk_segments(video_id, persona_id, segments)
            if not chunks:
                raise PartialDataError("No captions available for this video")

            existing = await self.storage.count_captions(video_id)
            replaced = existing != len(chunks)
            if replaced:
                await self._drop_stale_vectors(persona_id, video_id)
                await self.storage.replace_captions(video_id, chunks)
            else:
                logger.info(
                    "captions_already_extracted", video_id=video_id, count=existing
                )

            if replaced or video.captions_status != CaptionsStatus.COMPLETED:
                await self.storage.update_video_status(video_id, CaptionsStatus.EXTRACTED)

        except ExtractionPending:
            logger.info("extraction_pending", video_id=video_id, run_id=run_id)
            raise

        except ScrapeRunFailedError as e:
            await self.storage.clear_video_run(video_id)
            await self._mark_failed(video_id, e)
            raise

        except Exception as e:
            await self._mark_failed(video_id, e)
            raise

        result = ExtractionResult(
            video_id=video_id,
            run_id=run_id,
            captions_extracted=len(chunks),
            replaced=replaced,
        )
        logger.info("extraction_completed", **result.model_dump())
        return result

    def _run_timed_out(self, video: Video) -> bool:
        timeout = self.config.extraction_run_timeout_seconds
        if not timeout or video.processing_started_at is None:
            return False
        elapsed = datetime.now(UTC) - video.processing_started_at
        return elapsed > timedelta(seconds=timeout)

    async def _drop_stale_vectors(self, persona_id: str, video_id: str) -> None:
        """Remove the vectors of chunks about to be replaced.

        Vectors are keyed by chunk id, so they would otherwise outlive their
        rows and keep surfacing in retrieval.
        """
        stale_ids = await self.storage.list_caption_ids(video_id)
        if not stale_ids:
            return
        persona = await self.storage.get_persona(persona_id)
        await self.vector_store.delete(persona.namespace, stale_ids)
        logger.info("stale_vectors_dropped", video_id=video_id, count=len(stale_ids))

    async def _mark_failed(self, video_id: str, error: Exception) -> None:
        logger.warning(
            "extraction_failed",
            video_id=video_id,
            error_type=type(error).__name__,
            error=str(error),
        )
        await self.storage.update_video_status(
            video_id, CaptionsStatus.FAILED, error_message=str(error) or type(error).__name__
        )
