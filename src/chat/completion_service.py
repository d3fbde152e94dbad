"""LLM completion service for persona replies and reference selection.

Two pydantic-ai agents share one model configuration: a persona agent whose
instructions embed the retrieved transcript excerpts, streamed token by
token, and a citation agent with a structured output schema that picks the
excerpts the answer actually relied on.
"""

from collections.abc import AsyncIterator

from pydantic_ai import Agent, RunContext
from pydantic_ai.messages import (
    ModelMessage,
    ModelRequest,
    ModelResponse,
    TextPart,
    UserPromptPart,
)
from pydantic_ai.models import Model

from src.pipeline.schemas import Persona
from src.utils.logging import get_logger

from .config import get_citation_model, get_model
from .deps import ChatDeps
from .schemas import ChatMessage, CitationClaim, CitationSelection, RetrievedChunk

logger = get_logger(__name__)

CITATION_INSTRUCTIONS = """You select which transcript excerpts an answer relied on.

You are given numbered excerpts (each with a video id and a start time in
seconds) and the answer that was written from them. Return up to 5 references
to excerpts whose content the answer actually uses. Only use video ids that
appear in the excerpts. Set confidence between 0 and 1. Return an empty list if
the answer does not use any excerpt."""


def format_timestamp_display(seconds: float) -> str:
    """Format seconds as [MM:SS] or [HH:MM:SS] for display.

    Examples:
        >>> format_timestamp_display(125)
        "[02:05]"
        >>> format_timestamp_display(3725)
        "[01:02:05]"
    """
    total_seconds = int(seconds)
    hours = total_seconds // 3600
    minutes = (total_seconds % 3600) // 60
    secs = total_seconds % 60

    if hours > 0:
        return f"[{hours:02d}:{minutes:02d}:{secs:02d}]"
    else:
        return f"[{minutes:02d}:{secs:02d}]"


def format_excerpts(context: list[RetrievedChunk]) -> str:
    return "\n".join(
        f'{i}. Video: "{chunk.video_title}" ({chunk.video_id}) at '
        f"{format_timestamp_display(chunk.start_time)} ({chunk.start_time:g}s)\n"
        f"Content: {chunk.text}\n"
        for i, chunk in enumerate(context, start=1)
    )


def build_persona_instructions(persona: Persona, context: list[RetrievedChunk]) -> str:
    """Build the system instructions for one persona reply.

    Args:
        persona: Persona the model speaks as.
        context: Retrieved transcript excerpts for the current message.

    Returns:
        Instructions text embedding persona identity and excerpts.
    """
    name = persona.title or persona.username or persona.channel_id
    handle = f" @{persona.username}" if persona.username else ""
    excerpts = format_excerpts(context) if context else "No relevant transcripts were found."

    return f"""You are {name}, an AI persona based on the YouTube channel{handle}.

Channel description: {persona.description or "Not provided."}

You have access to transcripts from your videos. Use this information to answer questions in your authentic voice and style. When referencing specific content, mention the video it came from.

Relevant video transcripts for this question:
{excerpts}
Respond as the channel creator would, using their knowledge, style, and perspective. If you reference specific videos, format them as [Video Title](video_id@timestamp). Do not invent videos that are not listed above."""


def to_model_history(messages: list[ChatMessage]) -> list[ModelMessage]:
    """Convert stored chat messages into pydantic-ai message history."""
    history: list[ModelMessage] = []
    for message in messages:
        if message.role == "user":
            history.append(ModelRequest(parts=[UserPromptPart(content=message.content)]))
        else:
            history.append(ModelResponse(parts=[TextPart(content=message.content)]))
    return history


class CompletionService:
    """Streams persona replies and selects references for them."""

    def __init__(self, model: Model | None = None, citation_model: Model | None = None):
        """Initialize both agents.

        Args:
            model: Model for persona replies. Defaults to ``get_model()``.
            citation_model: Model for reference selection. Defaults to
                ``get_citation_model()``.
        """
        self.chat_agent = Agent(model or get_model(), deps_type=ChatDeps, retries=2)
        self.chat_agent.instructions(self._persona_instructions)

        self.citation_agent = Agent(
            citation_model or get_citation_model(),
            output_type=CitationSelection,
            instructions=CITATION_INSTRUCTIONS,
            retries=2,
        )

    @staticmethod
    def _persona_instructions(ctx: RunContext[ChatDeps]) -> str:
        return build_persona_instructions(ctx.deps.persona, ctx.deps.context)

    async def stream(
        self,
        persona: Persona,
        context: list[RetrievedChunk],
        history: list[ChatMessage],
        message: str,
    ) -> AsyncIterator[str]:
        """Stream the persona's reply to ``message`` as text deltas.

        Raises:
            Exception: Model errors propagate to the caller.
        """
        async with self.chat_agent.run_stream(
            message,
            deps=ChatDeps(persona=persona, context=context),
            message_history=to_model_history(history),
        ) as result:
            async for delta in result.stream_text(delta=True):
                if delta:
                    yield delta

    async def select_citations(
        self, context: list[RetrievedChunk], answer: str
    ) -> list[CitationClaim]:
        """Ask the model which excerpts ``answer`` relied on.

        Returns:
            Unvalidated claims; callers must check them against ``context``.
        """
        prompt = f"Excerpts:\n{format_excerpts(context)}\nAnswer:\n{answer}"
        result = await self.citation_agent.run(prompt)
        logger.info(
            "citations_selected",
            candidates=len(context),
            claims=len(result.output.references),
        )
        return result.output.references
