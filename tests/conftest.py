"""Shared fixtures and in-memory fakes of the relational stores."""

import itertools
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest

from src.pipeline.config import PipelineConfig
from src.pipeline.errors import ConflictError, DuplicateKeyError, NotFoundError
from src.pipeline.job_store import next_attempt
from src.pipeline.schemas import (
    CaptionChunk,
    CaptionsStatus,
    CatalogPage,
    ChannelInfo,
    DiscoveryStatus,
    Job,
    JobStatus,
    JobType,
    Persona,
    Video,
    VideoInfo,
)


class FakeJobStore:
    """In-memory job queue with the same contract as ``JobStore``."""

    def __init__(self, lease_seconds: float = 900) -> None:
        self.jobs: dict[str, Job] = {}
        self.lease_seconds = lease_seconds
        self._order: dict[str, int] = {}
        self._ids = itertools.count(1)

    async def enqueue(
        self,
        job_type: JobType,
        payload: dict[str, Any],
        idempotency_key: str,
        max_retries: int = 3,
        not_before: datetime | None = None,
    ) -> str:
        if any(job.idempotency_key == idempotency_key for job in self.jobs.values()):
            raise DuplicateKeyError(idempotency_key)
        seq = next(self._ids)
        job_id = f"job-{seq}"
        self.jobs[job_id] = Job(
            id=job_id,
            type=job_type,
            payload=payload,
            idempotency_key=idempotency_key,
            max_retries=max_retries,
            scheduled_at=not_before or datetime.now(UTC),
        )
        self._order[job_id] = seq
        return job_id

    async def enqueue_once(self, *args: Any, **kwargs: Any) -> str | None:
        try:
            return await self.enqueue(*args, **kwargs)
        except DuplicateKeyError:
            return None

    async def dequeue_next(self) -> Job | None:
        now = datetime.now(UTC)
        cutoff = now - timedelta(seconds=self.lease_seconds)
        expired = [
            job
            for job in self.jobs.values()
            if job.status == JobStatus.RUNNING
            and job.started_at is not None
            and job.started_at < cutoff
        ]
        if expired:
            job = min(expired, key=lambda j: j.started_at)
            job.started_at = now
            return job.model_copy()

        due = [
            job
            for job in self.jobs.values()
            if job.status == JobStatus.PENDING and job.scheduled_at <= now
        ]
        if not due:
            return None
        job = min(due, key=lambda j: (j.scheduled_at, self._order[j.id]))
        job.status = JobStatus.RUNNING
        job.started_at = now
        return job.model_copy()

    async def get(self, job_id: str) -> Job:
        if job_id not in self.jobs:
            raise NotFoundError(f"Job not found: {job_id}")
        return self.jobs[job_id]

    async def complete(self, job_id: str, result: dict[str, Any] | None = None) -> None:
        job = self.jobs[job_id]
        job.status = JobStatus.COMPLETED
        job.progress = 100
        job.result = result

    async def fail(self, job_id: str, error: str, retryable: bool = True) -> JobStatus:
        job = self.jobs[job_id]
        if retryable:
            status, count, scheduled_at = next_attempt(
                job.retry_count, job.max_retries, datetime.now(UTC)
            )
        else:
            status, count, scheduled_at = JobStatus.FAILED, job.retry_count, None
        job.status = status
        job.retry_count = count
        job.error_message = error
        if scheduled_at is not None:
            job.scheduled_at = scheduled_at
        return status

    async def defer(
        self, job_id: str, delay_seconds: float, reason: str, progress: int | None = None
    ) -> None:
        job = self.jobs[job_id]
        job.status = JobStatus.PENDING
        job.scheduled_at = datetime.now(UTC) + timedelta(seconds=delay_seconds)
        if progress is not None:
            job.progress = progress

    def of_type(self, job_type: JobType) -> list[Job]:
        return [job for job in self.jobs.values() if job.type == job_type]


class FakeStorage:
    """In-memory personas, videos and caption chunks."""

    def __init__(self) -> None:
        self.personas: dict[str, Persona] = {}
        self.videos: dict[str, Video] = {}
        self.captions: list[CaptionChunk] = []
        self._caption_ids = itertools.count(1)

    # Personas

    async def get_persona(self, persona_id: str) -> Persona:
        if persona_id not in self.personas:
            raise NotFoundError(f"Persona not found: {persona_id}")
        return self.personas[persona_id].model_copy()

    async def create_persona(self, channel: ChannelInfo) -> Persona:
        if any(p.channel_id == channel.channel_id for p in self.personas.values()):
            raise ConflictError(f"Persona already exists for channel {channel.channel_id}")
        persona = Persona(
            id=f"persona-{len(self.personas) + 1}",
            channel_id=channel.channel_id,
            title=channel.title,
            username=channel.username,
            video_count=channel.video_count,
        )
        self.personas[persona.id] = persona
        return persona.model_copy()

    async def update_persona_discovery(
        self,
        persona_id: str,
        continuation_token: str | None,
        discovery_status: DiscoveryStatus,
        video_count: int,
    ) -> None:
        persona = self.personas[persona_id]
        persona.continuation_token = continuation_token
        persona.discovery_status = discovery_status
        persona.video_count = video_count

    # Videos

    async def insert_new_videos(self, persona_id: str, videos: list[VideoInfo]) -> list[str]:
        inserted = []
        for info in videos:
            if info.video_id in self.videos:
                continue
            self.videos[info.video_id] = Video(
                id=info.video_id, persona_id=persona_id, title=info.title
            )
            inserted.append(info.video_id)
        return inserted

    async def get_video(self, video_id: str) -> Video:
        if video_id not in self.videos:
            raise NotFoundError(f"Video not found: {video_id}")
        return self.videos[video_id].model_copy()

    async def count_videos(self, persona_id: str) -> int:
        return sum(1 for v in self.videos.values() if v.persona_id == persona_id)

    async def get_video_titles(self, video_ids: list[str]) -> dict[str, str]:
        return {
            vid: self.videos[vid].title
            for vid in video_ids
            if vid in self.videos and self.videos[vid].title
        }

    async def start_video_run(self, video_id: str, run_id: str) -> None:
        video = self.videos[video_id]
        video.external_run_id = run_id
        video.processing_started_at = datetime.now(UTC)
        video.captions_status = CaptionsStatus.PROCESSING
        video.captions_error = None

    async def clear_video_run(self, video_id: str) -> None:
        video = self.videos[video_id]
        video.external_run_id = None
        video.processing_started_at = None

    async def update_video_status(
        self,
        video_id: str,
        status: CaptionsStatus,
        error_message: str | None = None,
        expected_status: CaptionsStatus | None = None,
    ) -> bool:
        video = self.videos.get(video_id)
        if video is None:
            return False
        if expected_status is not None and video.captions_status != expected_status:
            return False
        video.captions_status = status
        video.captions_error = error_message
        return True

    # Captions

    async def count_captions(self, video_id: str) -> int:
        return sum(1 for c in self.captions if c.video_id == video_id)

    async def list_caption_ids(self, video_id: str) -> list[str]:
        return [c.id for c in self.captions if c.video_id == video_id]

    async def replace_captions(self, video_id: str, chunks: list[CaptionChunk]) -> None:
        self.captions = [c for c in self.captions if c.video_id != video_id]
        for chunk in chunks:
            self.captions.append(
                chunk.model_copy(update={"id": f"cap-{next(self._caption_ids)}", "embedded": False})
            )

    async def list_unembedded_captions(
        self, persona_id: str, video_id: str | None = None, limit: int = 100
    ) -> list[CaptionChunk]:
        rows = [
            c
            for c in self.captions
            if c.persona_id == persona_id
            and not c.embedded
            and (video_id is None or c.video_id == video_id)
        ]
        return [c.model_copy() for c in rows[:limit]]

    async def count_unembedded_captions(self, persona_id: str, video_id: str) -> int:
        return sum(
            1
            for c in self.captions
            if c.persona_id == persona_id and c.video_id == video_id and not c.embedded
        )

    async def mark_caption_embedded(self, caption_id: str) -> None:
        for caption in self.captions:
            if caption.id == caption_id:
                caption.embedded = True

    def add_captions(self, persona_id: str, video_id: str, count: int, embedded: int = 0) -> None:
        """Seed ``count`` chunks for a video, the first ``embedded`` already embedded."""
        for i in range(count):
            self.captions.append(
                CaptionChunk(
                    id=f"cap-{next(self._caption_ids)}",
                    video_id=video_id,
                    persona_id=persona_id,
                    start_time=i * 34,
                    duration=40,
                    text=f"caption {i} of {video_id}",
                    embedded=i < embedded,
                )
            )


class FakeCatalog:
    """Catalog returning canned pages keyed by cursor."""

    def __init__(
        self,
        pages: dict[str | None, CatalogPage],
        channels: dict[str, ChannelInfo] | None = None,
    ) -> None:
        self.pages = pages
        self.channels = channels or {}
        self.calls: list[tuple[str, str | None]] = []

    async def get_channel_info(self, channel_ref: str) -> ChannelInfo:
        if channel_ref not in self.channels:
            raise NotFoundError(f"Channel not found: {channel_ref}")
        return self.channels[channel_ref]

    async def list_videos(self, channel_id: str, cursor: str | None = None) -> CatalogPage:
        self.calls.append((channel_id, cursor))
        if isinstance(self.pages.get(cursor), Exception):
            raise self.pages[cursor]
        return self.pages[cursor]


def video_info(video_id: str, published_at: datetime | None = None) -> VideoInfo:
    return VideoInfo(
        video_id=video_id,
        title=f"Title {video_id}",
        published_at=published_at or datetime(2024, 1, 1, tzinfo=UTC),
    )


@pytest.fixture
def config() -> PipelineConfig:
    """Create test configuration."""
    return PipelineConfig(
        supabase_url="https://test.supabase.co",
        supabase_key="test_key",
        youtube_api_key="yt_key",
        supadata_api_key="supadata_key",
        embedding_api_key="test_api_key",
        embedding_page_size=100,
        embedding_concurrency=10,
        discovery_max_retries=3,
        extraction_max_retries=3,
        embedding_max_retries=3,
        extraction_poll_seconds=30,
        chunk_duration_seconds=40,
        chunk_overlap_percent=15,
        retrieval_top_k=10,
        similarity_threshold=0.5,
        max_references=5,
        chat_history_limit=20,
    )


@pytest.fixture
def job_store() -> FakeJobStore:
    return FakeJobStore()


@pytest.fixture
def storage() -> FakeStorage:
    store = FakeStorage()
    store.personas["persona-1"] = Persona(
        id="persona-1",
        channel_id="UCCreator",
        title="The Creator",
        username="creator",
        description="Videos about building things.",
    )
    return store


@pytest.fixture
def make_catalog() -> type[FakeCatalog]:
    """Factory for catalogs returning canned pages keyed by cursor."""
    return FakeCatalog


@pytest.fixture
def make_video():
    """Factory for catalog video entries."""
    return video_info


class FakeVectorStore:
    """In-memory vectors keyed by (namespace, id); scores are canned per id."""

    def __init__(self) -> None:
        self.vectors: dict[tuple[str, str], dict[str, Any]] = {}

    async def upsert(
        self, namespace: str, vector_id: str, vector: list[float], metadata: dict[str, Any]
    ) -> None:
        self.vectors[(namespace, vector_id)] = metadata

    async def delete(self, namespace: str, vector_ids: list[str]) -> None:
        for vector_id in vector_ids:
            self.vectors.pop((namespace, vector_id), None)

    def ids(self, namespace: str) -> set[str]:
        return {vid for ns, vid in self.vectors if ns == namespace}


@pytest.fixture
def vector_store() -> FakeVectorStore:
    return FakeVectorStore()
