"""FastAPI application for the creator persona content pipeline.

Provides job trigger endpoints for discovery, extraction and embedding, the
scheduler tick used as a cron target, job inspection, persona registration,
priority discovery requests and the streaming persona chat endpoint.
"""

from datetime import UTC, datetime

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, ConfigDict, Field

from src.chat.completion_service import CompletionService
from src.chat.engine import ChatEngine
from src.chat.retrieval import RetrievalService
from src.chat.schemas import format_sse
from src.chat.store import ChatStore
from src.pipeline.config import get_config
from src.pipeline.errors import (
    ConflictError,
    InvalidPayloadError,
    JobDeferred,
    NotFoundError,
    PipelineError,
)
from src.pipeline.pipeline import ContentPipeline
from src.pipeline.schemas import DiscoveryPayload, ExtractionPayload
from src.utils.clients import get_clients
from src.utils.logging import get_logger

logger = get_logger(__name__)


# ==============================================================================
# Lifespan Management
# ==============================================================================


async def lifespan(app: FastAPI):  # type: ignore[misc]
    """Lifecycle manager for the FastAPI application.

    Builds the shared clients once and wires every service onto
    ``app.state``.
    """
    logger.info("application_startup_started")

    try:
        config = get_config()
        clients = get_clients(config)

        pipeline = ContentPipeline.from_clients(config, clients)
        chat_store = ChatStore(clients.supabase)
        retrieval = RetrievalService(
            config,
            pipeline.embedding.embedder,
            pipeline.embedding.vector_store,
            pipeline.storage,
        )

        app.state.supabase = clients.supabase
        app.state.pipeline = pipeline
        app.state.chat_store = chat_store
        app.state.chat_engine = ChatEngine(
            config, pipeline.storage, chat_store, retrieval, CompletionService()
        )

        logger.info(
            "application_startup_completed",
            services=["supabase", "pipeline", "chat_store", "chat_engine"],
        )

    except Exception:
        logger.exception("application_startup_failed")
        raise

    yield  # Application runs here

    logger.info("application_shutdown_completed")


# ==============================================================================
# FastAPI Application Setup
# ==============================================================================

app = FastAPI(
    title="Creator Persona API",
    description="Content pipeline jobs and streaming persona chat",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ==============================================================================
# Dependencies
# ==============================================================================


def get_pipeline(request: Request) -> ContentPipeline:
    return request.app.state.pipeline


def get_chat_engine(request: Request) -> ChatEngine:
    return request.app.state.chat_engine


def get_chat_store(request: Request) -> ChatStore:
    return request.app.state.chat_store


# ==============================================================================
# Error Handling
# ==============================================================================


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
    logger.warning("request_not_found", path=request.url.path, error=str(exc))
    return JSONResponse(status_code=404, content={"error": str(exc)})


@app.exception_handler(ConflictError)
async def conflict_handler(request: Request, exc: ConflictError) -> JSONResponse:
    return JSONResponse(status_code=409, content={"error": str(exc)})


@app.exception_handler(InvalidPayloadError)
async def invalid_payload_handler(request: Request, exc: InvalidPayloadError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"error": str(exc)})


@app.exception_handler(PipelineError)
async def pipeline_error_handler(request: Request, exc: PipelineError) -> JSONResponse:
    logger.error(
        "request_failed",
        path=request.url.path,
        error_type=type(exc).__name__,
        error=str(exc),
    )
    return JSONResponse(status_code=500, content={"error": str(exc)})


# ==============================================================================
# Request Models
# ==============================================================================


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class DiscoveryRequest(CamelModel):
    persona_id: str = Field(alias="personaId", min_length=1)
    stop_at: datetime | None = Field(default=None, alias="stopAt")


class ExtractionRequest(CamelModel):
    persona_id: str = Field(alias="personaId", min_length=1)
    video_id: str = Field(alias="videoId", min_length=1)
    restart: bool = False


class EmbeddingRequest(CamelModel):
    persona_id: str = Field(alias="personaId", min_length=1)
    video_id: str | None = Field(default=None, alias="videoId")
    drain: bool = False


class ChatRequest(CamelModel):
    persona_id: str = Field(alias="personaId", min_length=1)
    message: str = Field(min_length=1)
    user_id: str | None = Field(default=None, alias="userId")
    chat_session_id: str | None = Field(default=None, alias="chatSessionId")
    top_k: int | None = Field(default=None, alias="topK", ge=1, le=50)
    similarity_threshold: float | None = Field(
        default=None, alias="similarityThreshold", ge=0.0, le=1.0
    )


class PersonaRequest(CamelModel):
    channel: str = Field(alias="channelInput", min_length=1)
    start_discovery: bool = Field(default=True, alias="startDiscovery")


class SessionTitleRequest(CamelModel):
    title: str = Field(min_length=1, max_length=200)


# ==============================================================================
# API Endpoints
# ==============================================================================


@app.get("/health")
async def health_check(request: Request):
    """Health check endpoint.

    Returns:
        Health status, timestamp and which services are wired.
    """
    state = request.app.state
    return {
        "status": "healthy",
        "timestamp": datetime.now(UTC).isoformat(),
        "services": {
            "supabase": getattr(state, "supabase", None) is not None,
            "pipeline": getattr(state, "pipeline", None) is not None,
            "chat_engine": getattr(state, "chat_engine", None) is not None,
        },
    }


@app.post("/api/jobs/video-discovery")
async def video_discovery(
    body: DiscoveryRequest, pipeline: ContentPipeline = Depends(get_pipeline)
):
    """Fetch one catalog page for a persona now and chain the next page."""
    persona = await pipeline.storage.get_persona(body.persona_id)
    result = await pipeline.handle_discovery(
        DiscoveryPayload(
            persona_id=persona.id, channel_id=persona.channel_id, stop_at=body.stop_at
        )
    )
    return {"success": True, **result.model_dump(mode="json")}


@app.post("/api/jobs/caption-extraction")
async def caption_extraction(
    body: ExtractionRequest, pipeline: ContentPipeline = Depends(get_pipeline)
):
    """Extract captions for one video now.

    Returns 202 while the external caption run is still in progress; call
    again later to resume the same run.
    """
    try:
        result = await pipeline.handle_extraction(
            ExtractionPayload(
                persona_id=body.persona_id, video_id=body.video_id, restart=body.restart
            )
        )
    except JobDeferred as e:
        return JSONResponse(
            status_code=202,
            content={
                "success": False,
                "status": "processing",
                "message": e.reason,
                "retryAfter": e.delay_seconds,
            },
        )
    return {"success": True, **result.model_dump(mode="json")}


@app.post("/api/jobs/caption-embedding")
async def caption_embedding(
    body: EmbeddingRequest, pipeline: ContentPipeline = Depends(get_pipeline)
):
    """Embed one page of pending caption chunks, or all of them with ``drain``."""
    if body.drain:
        result = await pipeline.embedding.drain(body.persona_id, body.video_id)
    else:
        result = await pipeline.embedding.embed_batch(body.persona_id, body.video_id)
    return {"success": True, **result.model_dump(mode="json")}


@app.post("/api/jobs/process")
async def process_jobs(pipeline: ContentPipeline = Depends(get_pipeline)):
    """Run one scheduler tick."""
    outcome = await pipeline.tick()
    return outcome.model_dump(mode="json")


@app.get("/api/jobs/{job_id}")
async def get_job(job_id: str, pipeline: ContentPipeline = Depends(get_pipeline)):
    job = await pipeline.job_store.get(job_id)
    return job.model_dump(
        mode="json",
        include={"id", "type", "status", "progress", "retry_count", "error_message", "result"},
    )


@app.post("/api/personas", status_code=201)
async def create_persona(body: PersonaRequest, pipeline: ContentPipeline = Depends(get_pipeline)):
    """Register a persona for a channel and queue discovery of its first page."""
    persona, job_id = await pipeline.register_persona(
        body.channel, start_discovery=body.start_discovery
    )
    return {**persona.model_dump(mode="json"), "namespace": persona.namespace, "jobId": job_id}


@app.post("/api/personas/{persona_id}/priority-boost")
async def priority_boost(persona_id: str, pipeline: ContentPipeline = Depends(get_pipeline)):
    """Enqueue a discovery job that runs ahead of everything already due."""
    job_id = await pipeline.request_discovery(persona_id, priority=True)
    return {"success": True, "jobId": job_id}


@app.post("/api/chat/stream")
async def chat_stream(body: ChatRequest, engine: ChatEngine = Depends(get_chat_engine)):
    """Stream a persona reply as server-sent events."""
    logger.info(
        "chat_request_started",
        persona_id=body.persona_id,
        chat_session_id=body.chat_session_id,
        message_length=len(body.message),
    )

    async def event_stream():
        async for event in engine.stream_reply(
            body.persona_id,
            body.message,
            user_id=body.user_id,
            chat_session_id=body.chat_session_id,
            top_k=body.top_k,
            similarity_threshold=body.similarity_threshold,
        ):
            yield format_sse(event)

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
    )


@app.put("/api/chat-sessions/{session_id}")
async def rename_chat_session(
    session_id: str,
    body: SessionTitleRequest,
    chat_store: ChatStore = Depends(get_chat_store),
):
    session = await chat_store.update_title(session_id, body.title)
    return session.model_dump(mode="json")
