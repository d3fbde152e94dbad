"""Embedding stage: vectorize un-embedded caption chunks one bounded page at a time."""

import asyncio

from src.utils.logging import get_logger

from .config import PipelineConfig
from .embedding_service import EmbeddingService
from .errors import EmbeddingBatchError
from .schemas import CaptionChunk, CaptionsStatus, EmbeddingResult
from .storage_service import StorageService
from .vector_store import VectorStore

logger = get_logger(__name__)


class EmbeddingStage:
    """Embeds caption chunks, upserts their vectors and flips their flags.

    The vector upsert and the ``embedded`` flag live in different stores and
    are not written atomically. A chunk whose flag update fails stays
    un-embedded and is upserted again next time; upserts are keyed by the
    chunk id so the repeat is harmless.
    """

    def __init__(
        self,
        config: PipelineConfig,
        storage: StorageService,
        embedder: EmbeddingService,
        vector_store: VectorStore,
    ):
        self.config = config
        self.storage = storage
        self.embedder = embedder
        self.vector_store = vector_store

    @property
    def page_size(self) -> int:
        return self.config.embedding_page_size

    async def embed_batch(
        self, persona_id: str, video_id: str | None = None
    ) -> EmbeddingResult:
        """Embed up to one page of un-embedded chunks for a persona.

        Chunks are processed in concurrent batches of ``embedding_concurrency``;
        each batch is awaited before the next starts. Afterwards every video
        touched by the page (or the scoped video) that has no un-embedded
        chunks left moves from ``extracted`` to ``completed``.

        Args:
            persona_id: Persona whose chunks are embedded.
            video_id: Restrict the page to one video.

        Returns:
            EmbeddingResult with processed/failed counts and the number of
            candidates selected.

        Raises:
            NotFoundError: If the persona does not exist.
            EmbeddingBatchError: If candidates existed but none were embedded.
        """
        persona = await self.storage.get_persona(persona_id)
        chunks = await self.storage.list_unembedded_captions(
            persona_id, video_id, limit=self.page_size
        )

        logger.info(
            "embedding_batch_started",
            persona_id=persona_id,
            video_id=video_id,
            candidates=len(chunks),
        )

        processed = 0
        batch_size = self.config.embedding_concurrency
        for i in range(0, len(chunks), batch_size):
            batch = chunks[i : i + batch_size]
            outcomes = await asyncio.gather(
                *[self._embed_chunk(persona.namespace, chunk) for chunk in batch]
            )
            batch_processed = sum(outcomes)
            processed += batch_processed
            logger.debug(
                "embedding_sub_batch_completed",
                batch_num=i // batch_size + 1,
                processed=batch_processed,
                count=len(batch),
            )

        failed = len(chunks) - processed
        if chunks and processed == 0:
            raise EmbeddingBatchError(
                f"No embeddings produced for {len(chunks)} caption chunks"
            )

        touched = {video_id} if video_id else {chunk.video_id for chunk in chunks}
        completed_videos = []
        for touched_video in sorted(touched):
            if await self._complete_if_drained(persona_id, touched_video):
                completed_videos.append(touched_video)

        result = EmbeddingResult(
            processed=processed,
            failed=failed,
            total_candidates=len(chunks),
            completed_videos=completed_videos,
        )
        logger.info("embedding_batch_completed", persona_id=persona_id, **result.model_dump())
        return result

    async def drain(
        self, persona_id: str, video_id: str | None = None, max_pages: int = 50
    ) -> EmbeddingResult:
        """Call ``embed_batch`` until the backlog is empty or stops shrinking.

        A page smaller than the page size means the backlog is drained.
        """
        total = EmbeddingResult()
        for _ in range(max_pages):
            page = await self.embed_batch(persona_id, video_id)
            total.processed += page.processed
            total.failed += page.failed
            total.total_candidates += page.total_candidates
            total.completed_videos.extend(page.completed_videos)
            if page.total_candidates < self.page_size or page.processed == 0:
                break
        return total

    async def _embed_chunk(self, namespace: str, chunk: CaptionChunk) -> bool:
        """Embed, upsert and flag one chunk; failures are logged, not raised."""
        try:
            vector = await self.embedder.embed_text(chunk.text)
            await self.vector_store.upsert(
                namespace,
                vector_id=str(chunk.id),
                vector=vector,
                metadata={
                    "text": chunk.text,
                    "video_id": chunk.video_id,
                    "persona_id": chunk.persona_id,
                    "start_time": chunk.start_time,
                    "duration": chunk.duration,
                },
            )
            await self.storage.mark_caption_embedded(str(chunk.id))
            return True

        except Exception as e:
            logger.warning(
                "caption_embedding_failed",
                caption_id=chunk.id,
                video_id=chunk.video_id,
                error_type=type(e).__name__,
                error=str(e),
            )
            return False

    async def _complete_if_drained(self, persona_id: str, video_id: str) -> bool:
        remaining = await self.storage.count_unembedded_captions(persona_id, video_id)
        if remaining > 0:
            return False
        return await self.storage.update_video_status(
            video_id,
            CaptionsStatus.COMPLETED,
            expected_status=CaptionsStatus.EXTRACTED,
        )
