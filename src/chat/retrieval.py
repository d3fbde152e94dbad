"""Retrieval of persona caption chunks for a chat message."""

from src.pipeline.config import PipelineConfig
from src.pipeline.embedding_service import EmbeddingService
from src.pipeline.schemas import Persona
from src.pipeline.storage_service import StorageService
from src.pipeline.vector_store import VectorStore
from src.utils.logging import get_logger

from .schemas import RetrievedChunk

logger = get_logger(__name__)

UNTITLED_VIDEO = "Untitled video"


class RetrievalService:
    """Embeds a query and returns the persona's closest caption chunks."""

    def __init__(
        self,
        config: PipelineConfig,
        embedder: EmbeddingService,
        vector_store: VectorStore,
        storage: StorageService,
    ):
        self.config = config
        self.embedder = embedder
        self.vector_store = vector_store
        self.storage = storage

    async def retrieve(
        self,
        persona: Persona,
        query: str,
        top_k: int | None = None,
        threshold: float | None = None,
    ) -> list[RetrievedChunk]:
        """Find caption chunks relevant to ``query`` in the persona's namespace.

        Args:
            persona: Persona whose namespace is searched.
            query: User message text.
            top_k: Number of nearest chunks to request. Falls back to the
                persona's ``top_k``, then to the configured default.
            threshold: Minimum similarity score; lower matches are dropped.

        Returns:
            Chunks ordered by descending score, each with its video title.

        Raises:
            Exception: If the query embedding or the vector search fails.
        """
        k = top_k or persona.top_k or self.config.retrieval_top_k
        min_score = self.config.similarity_threshold if threshold is None else threshold

        vector = await self.embedder.embed_text(query)
        matches = await self.vector_store.query(persona.namespace, vector, top_k=k)

        kept = [m for m in matches if m.score >= min_score]
        titles = await self.storage.get_video_titles(
            sorted({str(m.metadata.get("video_id", "")) for m in kept})
        )

        chunks = [
            RetrievedChunk(
                id=m.id,
                video_id=str(m.metadata.get("video_id", "")),
                video_title=titles.get(str(m.metadata.get("video_id", "")), UNTITLED_VIDEO),
                start_time=float(m.metadata.get("start_time", 0.0)),
                duration=float(m.metadata.get("duration", 0.0)),
                text=str(m.metadata.get("text", "")),
                score=m.score,
            )
            for m in sorted(kept, key=lambda m: m.score, reverse=True)
        ]

        logger.info(
            "retrieval_completed",
            persona_id=persona.id,
            top_k=k,
            threshold=min_score,
            matches=len(matches),
            kept=len(chunks),
        )
        return chunks
