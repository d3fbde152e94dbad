"""Pipeline orchestrator wiring stages to the job queue."""

from datetime import UTC, datetime

from src.utils.clients import Clients
from src.utils.logging import get_logger

from .catalog_service import CatalogService
from .chunking_service import ChunkingService
from .config import PipelineConfig, get_config
from .discovery import DiscoveryStage
from .embedding_service import EmbeddingService
from .embedding_stage import EmbeddingStage
from .errors import JobDeferred
from .extraction import ExtractionStage
from .job_store import JobStore
from .schemas import (
    DiscoveryPayload,
    DiscoveryResult,
    EmbeddingPayload,
    EmbeddingResult,
    ExtractionPayload,
    ExtractionResult,
    JobType,
    Persona,
)
from .scheduler import JobWorker, TickOutcome
from .scraping_service import ScrapingService
from .storage_service import StorageService
from .vector_store import VectorStore

logger = get_logger(__name__)

# Priority jobs are scheduled at the epoch so they sort ahead of everything due
PRIORITY_SCHEDULE = datetime(1970, 1, 1, tzinfo=UTC)


def discovery_key(persona_id: str, cursor: str | None) -> str:
    """Idempotency key of the discovery job for one catalog page."""
    return f"discovery:{persona_id}:{cursor or 'start'}"


def embedding_key(video_id: str, run_id: str) -> str:
    """Idempotency key of the embedding job following one extraction run."""
    return f"embedding:{video_id}:{run_id}"


class ContentPipeline:
    """Orchestrates discovery, extraction and embedding.

    Holds one instance of every stage and collaborator adapter, and exposes
    the job handlers the scheduler dispatches to. Each handler runs its stage
    once and enqueues the follow-on job with a deterministic idempotency key,
    so repeated runs never double-schedule work.
    """

    def __init__(
        self,
        storage: StorageService,
        job_store: JobStore,
        catalog: CatalogService,
        scraper: ScrapingService,
        embedder: EmbeddingService,
        vector_store: VectorStore,
        config: PipelineConfig | None = None,
    ):
        """Initialize pipeline with injected services.

        Args:
            storage: Relational store for personas, videos and captions.
            job_store: Durable job queue.
            catalog: Channel catalog adapter.
            scraper: Caption scraping adapter.
            embedder: Embedding adapter.
            vector_store: Namespaced vector store.
            config: Configuration object. If None, loads from environment.
        """
        self.config = config or get_config()
        self.storage = storage
        self.job_store = job_store
        self.catalog = catalog

        self.discovery = DiscoveryStage(self.config, storage, job_store, catalog)
        self.extraction = ExtractionStage(
            self.config, storage, scraper, ChunkingService(self.config), vector_store
        )
        self.embedding = EmbeddingStage(self.config, storage, embedder, vector_store)

        self.worker = JobWorker(
            job_store,
            {
                JobType.DISCOVERY: self.handle_discovery,
                JobType.EXTRACTION: self.handle_extraction,
                JobType.EMBEDDING: self.handle_embedding,
            },
        )

    @classmethod
    def from_clients(cls, config: PipelineConfig, clients: Clients) -> "ContentPipeline":
        """Build the pipeline and its adapters around shared clients."""
        return cls(
            storage=StorageService(clients.supabase),
            job_store=JobStore(clients.supabase, lease_seconds=config.job_lease_seconds),
            catalog=CatalogService(config),
            scraper=ScrapingService(config),
            embedder=EmbeddingService(config, clients.embedding),
            vector_store=VectorStore(clients.supabase),
            config=config,
        )

    async def tick(self) -> TickOutcome:
        """Run one scheduler tick."""
        return await self.worker.tick()

    # ==========================================================================
    # Producers
    # ==========================================================================

    async def register_persona(
        self, channel_ref: str, start_discovery: bool = True
    ) -> tuple[Persona, str | None]:
        """Create a persona for a channel and optionally queue its first page.

        Args:
            channel_ref: Channel id, handle or channel URL.
            start_discovery: Enqueue discovery of the first catalog page.

        Returns:
            Tuple of (new persona, discovery job id or None).

        Raises:
            NotFoundError: If the channel does not exist.
            ConflictError: If the channel already has a persona.
        """
        channel = await self.catalog.get_channel_info(channel_ref)
        persona = await self.storage.create_persona(channel)

        job_id = None
        if start_discovery:
            job_id = await self.request_discovery(persona.id)
        return persona, job_id

    async def request_discovery(
        self, persona_id: str, priority: bool = False, stop_at: datetime | None = None
    ) -> str | None:
        """Enqueue a discovery job for a persona's current cursor.

        Priority requests get a unique key and an epoch schedule so they run
        on the next tick even when other work is due.

        Returns:
            The job id, or None if that page is already scheduled.
        """
        persona = await self.storage.get_persona(persona_id)
        payload = DiscoveryPayload(
            persona_id=persona.id, channel_id=persona.channel_id, stop_at=stop_at
        ).model_dump(mode="json")

        if priority:
            key = f"priority-discovery:{persona.id}:{datetime.now(UTC).timestamp():.0f}"
            not_before = PRIORITY_SCHEDULE
        else:
            key = discovery_key(persona.id, persona.continuation_token)
            not_before = None

        job_id = await self.job_store.enqueue_once(
            JobType.DISCOVERY,
            payload,
            idempotency_key=key,
            max_retries=self.config.discovery_max_retries,
            not_before=not_before,
        )
        logger.info(
            "discovery_requested",
            persona_id=persona_id,
            priority=priority,
            job_id=job_id,
        )
        return job_id

    # ==========================================================================
    # Job handlers
    # ==========================================================================

    async def handle_discovery(self, payload: DiscoveryPayload) -> DiscoveryResult:
        result = await self.discovery.discover(
            payload.persona_id, payload.channel_id, stop_at=payload.stop_at
        )
        if result.has_more:
            await self.job_store.enqueue_once(
                JobType.DISCOVERY,
                payload.model_dump(mode="json"),
                idempotency_key=discovery_key(payload.persona_id, result.continuation_token),
                max_retries=self.config.discovery_max_retries,
            )
        return result

    async def handle_extraction(self, payload: ExtractionPayload) -> ExtractionResult:
        result = await self.extraction.extract(
            payload.persona_id, payload.video_id, restart=payload.restart
        )
        await self.job_store.enqueue_once(
            JobType.EMBEDDING,
            EmbeddingPayload(persona_id=payload.persona_id, video_id=payload.video_id).model_dump(),
            idempotency_key=embedding_key(payload.video_id, result.run_id),
            max_retries=self.config.embedding_max_retries,
        )
        return result

    async def handle_embedding(self, payload: EmbeddingPayload) -> EmbeddingResult:
        result = await self.embedding.embed_batch(payload.persona_id, payload.video_id)
        if result.total_candidates >= self.embedding.page_size:
            # More pages remain; run again on the next tick
            raise JobDeferred(
                f"Embedded {result.processed} chunks, more remain",
                delay_seconds=0,
            )
        return result
