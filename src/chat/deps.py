"""Chat agent dependency definitions."""

from dataclasses import dataclass, field

from src.pipeline.schemas import Persona

from .schemas import RetrievedChunk


@dataclass
class ChatDeps:
    """Runtime dependencies for the persona agent's instructions.

    Attributes:
        persona: Persona the agent speaks as.
        context: Transcript excerpts retrieved for the current message.
    """

    persona: Persona
    context: list[RetrievedChunk] = field(default_factory=list)
