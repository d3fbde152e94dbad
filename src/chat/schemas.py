"""Pydantic models for chat sessions, retrieval context and stream events."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field


class RetrievedChunk(BaseModel):
    """A caption chunk that survived retrieval for one user message."""

    id: str
    video_id: str
    video_title: str
    start_time: float = 0.0
    duration: float = 0.0
    text: str
    score: float


class CitationClaim(BaseModel):
    """A reference as proposed by the model, before validation."""

    video_id: str = Field(description="Id of a video from the provided excerpts")
    timestamp: float = Field(description="Start time in seconds of the cited excerpt")
    confidence: float = Field(description="How strongly the answer relies on it, 0 to 1")


class CitationSelection(BaseModel):
    """Structured output of the reference-selection call."""

    references: list[CitationClaim] = Field(default_factory=list)


class VideoReference(BaseModel):
    """Validated reference attached to an assistant message."""

    video_id: str
    title: str
    timestamp: float
    confidence: float = Field(ge=0.0, le=1.0)


class ChatSession(BaseModel):
    id: str
    persona_id: str
    user_id: str | None = None
    title: str
    created_at: datetime | None = None
    updated_at: datetime | None = None


class ChatMessage(BaseModel):
    id: str
    chat_session_id: str
    role: Literal["user", "assistant"]
    content: str
    video_references: list[VideoReference] | None = None
    created_at: datetime | None = None


# ==============================================================================
# Stream events
# ==============================================================================


class ContentEvent(BaseModel):
    type: Literal["content"] = "content"
    content: str


class ReferencesEvent(BaseModel):
    type: Literal["references"] = "references"
    references: list[VideoReference]


class CompleteEvent(BaseModel):
    type: Literal["complete"] = "complete"
    message_id: str | None = Field(default=None, serialization_alias="messageId")
    chat_session_id: str = Field(serialization_alias="chatSessionId")


class ErrorEvent(BaseModel):
    type: Literal["error"] = "error"
    error: str


ChatEvent = ContentEvent | ReferencesEvent | CompleteEvent | ErrorEvent


def format_sse(event: ChatEvent) -> str:
    """Serialize an event as one server-sent event frame."""
    return f"data: {event.model_dump_json(by_alias=True)}\n\n"
