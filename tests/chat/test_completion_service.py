"""Unit tests for the completion service using pydantic-ai test models."""

import pytest
from pydantic_ai.messages import ModelRequest, ModelResponse
from pydantic_ai.models.test import TestModel

from src.chat.completion_service import (
    CompletionService,
    build_persona_instructions,
    format_timestamp_display,
    to_model_history,
)
from src.chat.schemas import ChatMessage, RetrievedChunk
from src.pipeline.schemas import Persona


@pytest.fixture
def persona() -> Persona:
    return Persona(
        id="persona-1",
        channel_id="UCCreator",
        title="The Creator",
        username="creator",
        description="Videos about building things.",
    )


@pytest.fixture
def context() -> list[RetrievedChunk]:
    return [
        RetrievedChunk(
            id="cap-1",
            video_id="v1",
            video_title="Building a bench",
            start_time=125,
            duration=40,
            text="Measure twice, cut once.",
            score=0.9,
        )
    ]


@pytest.mark.unit
class TestPromptHelpers:
    def test_format_timestamp_display(self) -> None:
        assert format_timestamp_display(125) == "[02:05]"
        assert format_timestamp_display(3725) == "[01:02:05]"

    def test_instructions_embed_persona_and_excerpts(self, persona, context) -> None:
        instructions = build_persona_instructions(persona, context)

        assert "You are The Creator" in instructions
        assert "@creator" in instructions
        assert "Videos about building things." in instructions
        assert '"Building a bench" (v1) at [02:05]' in instructions
        assert "Measure twice, cut once." in instructions

    def test_instructions_without_context(self, persona) -> None:
        instructions = build_persona_instructions(persona, [])

        assert "No relevant transcripts were found." in instructions

    def test_history_conversion(self) -> None:
        history = to_model_history(
            [
                ChatMessage(id="m1", chat_session_id="s1", role="user", content="Hi"),
                ChatMessage(id="m2", chat_session_id="s1", role="assistant", content="Hello"),
            ]
        )

        assert isinstance(history[0], ModelRequest)
        assert isinstance(history[1], ModelResponse)
        assert history[1].parts[0].content == "Hello"


@pytest.mark.unit
class TestCompletionService:
    @pytest.mark.asyncio
    async def test_stream_yields_text_deltas(self, persona, context) -> None:
        service = CompletionService(
            model=TestModel(custom_output_text="Measure twice and cut once."),
            citation_model=TestModel(),
        )

        deltas = [delta async for delta in service.stream(persona, context, [], "Any tips?")]

        assert "".join(deltas) == "Measure twice and cut once."

    @pytest.mark.asyncio
    async def test_select_citations_returns_structured_claims(self, context) -> None:
        service = CompletionService(
            model=TestModel(),
            citation_model=TestModel(
                custom_output_args={
                    "references": [{"video_id": "v1", "timestamp": 125, "confidence": 0.8}]
                }
            ),
        )

        claims = await service.select_citations(context, "Measure twice, cut once.")

        assert [(c.video_id, c.timestamp, c.confidence) for c in claims] == [("v1", 125, 0.8)]
