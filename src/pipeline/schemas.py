"""Pydantic schemas for the content pipeline.

Rows read from the relational store are validated into these models. Job
payloads and results are a tagged union keyed by ``JobType``.
"""

from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from .errors import InvalidPayloadError


class JobType(StrEnum):
    DISCOVERY = "discovery"
    EXTRACTION = "extraction"
    EMBEDDING = "embedding"


class JobStatus(StrEnum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class DiscoveryStatus(StrEnum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class CaptionsStatus(StrEnum):
    PENDING = "pending"
    PROCESSING = "processing"
    EXTRACTED = "extracted"
    COMPLETED = "completed"
    FAILED = "failed"


# ==============================================================================
# Job payloads and results
# ==============================================================================


class DiscoveryPayload(BaseModel):
    """Walk one page of a persona's channel catalog."""

    persona_id: str
    channel_id: str
    # Bounded mode: stop once a video published at or before this is reached
    stop_at: datetime | None = None


class ExtractionPayload(BaseModel):
    """Extract captions for one video."""

    persona_id: str
    video_id: str
    restart: bool = False


class EmbeddingPayload(BaseModel):
    """Embed one page of caption chunks for a persona, optionally one video."""

    persona_id: str
    video_id: str | None = None


class DiscoveryResult(BaseModel):
    videos_found: int = 0
    videos_inserted: int = 0
    jobs_enqueued: int = 0
    has_more: bool = False
    continuation_token: str | None = None


class ExtractionResult(BaseModel):
    video_id: str
    run_id: str
    captions_extracted: int
    replaced: bool


class EmbeddingResult(BaseModel):
    processed: int = 0
    failed: int = 0
    total_candidates: int = 0
    completed_videos: list[str] = Field(default_factory=list)


JobPayload = DiscoveryPayload | ExtractionPayload | EmbeddingPayload
JobResult = DiscoveryResult | ExtractionResult | EmbeddingResult

PAYLOAD_TYPES: dict[JobType, type[BaseModel]] = {
    JobType.DISCOVERY: DiscoveryPayload,
    JobType.EXTRACTION: ExtractionPayload,
    JobType.EMBEDDING: EmbeddingPayload,
}


def parse_payload(job_type: JobType, payload: dict[str, Any]) -> JobPayload:
    """Resolve an opaque payload map into the typed payload for ``job_type``.

    Raises:
        InvalidPayloadError: If the payload does not match the job type.
    """
    try:
        return PAYLOAD_TYPES[job_type].model_validate(payload)  # type: ignore[return-value]
    except ValidationError as e:
        raise InvalidPayloadError(f"Invalid {job_type} payload: {e}") from e


class Job(BaseModel):
    """Durable unit of work in the job queue."""

    id: str
    type: JobType
    payload: dict[str, Any] = Field(default_factory=dict)
    status: JobStatus = JobStatus.PENDING
    progress: int = 0
    retry_count: int = 0
    max_retries: int = 3
    idempotency_key: str
    scheduled_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    error_message: str | None = None
    result: dict[str, Any] | None = None

    def typed_payload(self) -> JobPayload:
        return parse_payload(self.type, self.payload)


# ==============================================================================
# Catalog entities
# ==============================================================================


class Persona(BaseModel):
    """A chat persona bound to one creator channel."""

    id: str
    channel_id: str
    title: str = ""
    username: str = ""
    description: str = ""
    continuation_token: str | None = None
    discovery_status: DiscoveryStatus = DiscoveryStatus.PENDING
    video_count: int = 0
    top_k: int | None = None
    last_video_discovered: datetime | None = None

    @property
    def namespace(self) -> str:
        """Vector store namespace holding this persona's caption vectors."""
        return self.channel_id.lower()


class ChannelInfo(BaseModel):
    """Channel metadata used to register a persona."""

    channel_id: str
    title: str
    username: str
    description: str = ""
    thumbnail_url: str = ""
    video_count: int = 0


class VideoInfo(BaseModel):
    """Video metadata as reported by the catalog."""

    video_id: str
    title: str
    description: str = ""
    thumbnail_url: str = ""
    duration: str = "0:00"
    published_at: datetime | None = None
    view_count: int = 0


class CatalogPage(BaseModel):
    """One page of a channel's catalog listing."""

    items: list[VideoInfo]
    next_cursor: str | None = None
    has_more: bool = False


class Video(BaseModel):
    """A video row. ``id`` is the external (YouTube) video id."""

    id: str
    persona_id: str
    title: str = ""
    captions_status: CaptionsStatus = CaptionsStatus.PENDING
    captions_error: str | None = None
    external_run_id: str | None = None
    processing_started_at: datetime | None = None


class CaptionSegment(BaseModel):
    """Timed transcript segment returned by the scraping service (seconds)."""

    start: float
    duration: float
    text: str


class CaptionChunk(BaseModel):
    """Timestamped transcript window, the unit of embedding and retrieval."""

    id: str | None = None
    video_id: str
    persona_id: str
    start_time: float
    duration: float
    text: str
    embedded: bool = False
