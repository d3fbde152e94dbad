"""Retrieval-synthesis engine producing the chat event stream."""

import asyncio
from collections.abc import AsyncIterator
from contextlib import aclosing

from src.pipeline.config import PipelineConfig
from src.pipeline.errors import NotFoundError
from src.pipeline.storage_service import StorageService
from src.utils.logging import get_logger

from .citations import validate_references
from .completion_service import CompletionService
from .retrieval import RetrievalService
from .schemas import (
    ChatEvent,
    CompleteEvent,
    ContentEvent,
    ErrorEvent,
    ReferencesEvent,
    VideoReference,
)
from .store import ChatStore, session_title

logger = get_logger(__name__)

GENERATION_FAILED = "Failed to generate response"


class ChatEngine:
    """Answers one user message as a stream of chat events.

    The stream is zero or more ``content`` events, at most one ``references``
    event, then exactly one terminal ``complete`` or ``error`` event. A
    consumer that stops iterating cancels generation: no references are
    selected and no assistant message is stored, while an already stored user
    message stays.
    """

    def __init__(
        self,
        config: PipelineConfig,
        storage: StorageService,
        chat_store: ChatStore,
        retrieval: RetrievalService,
        completion: CompletionService,
    ):
        self.config = config
        self.storage = storage
        self.chat_store = chat_store
        self.retrieval = retrieval
        self.completion = completion

    async def stream_reply(
        self,
        persona_id: str,
        message: str,
        user_id: str | None = None,
        chat_session_id: str | None = None,
        top_k: int | None = None,
        similarity_threshold: float | None = None,
    ) -> AsyncIterator[ChatEvent]:
        """Run retrieval, streaming synthesis and citation for one message.

        Args:
            persona_id: Persona answering the message.
            message: User message text.
            user_id: Author of the message, stored on both messages.
            chat_session_id: Existing session of this persona. A new one is
                created when None.
            top_k: Override for the number of chunks retrieved.
            similarity_threshold: Override for the minimum similarity score.

        Yields:
            Chat events in wire order.
        """
        log = logger.bind(persona_id=persona_id, chat_session_id=chat_session_id)

        try:
            # Setup: persona, session, user message, retrieval
            try:
                persona = await self.storage.get_persona(persona_id)

                if chat_session_id is None:
                    chat_session_id = await self.chat_store.create_session(
                        persona.id, user_id, session_title(message)
                    )
                    log = log.bind(chat_session_id=chat_session_id)
                else:
                    session = await self.chat_store.get_session(chat_session_id)
                    if session.persona_id != persona.id:
                        raise NotFoundError(
                            f"Chat session {chat_session_id} not found for persona {persona.id}"
                        )
                history = await self.chat_store.list_recent_messages(
                    chat_session_id, limit=self.config.chat_history_limit
                )

                await self.chat_store.add_message(
                    chat_session_id, persona.id, user_id, "user", message
                )
                context = await self.retrieval.retrieve(
                    persona, message, top_k=top_k, threshold=similarity_threshold
                )

            except NotFoundError as e:
                log.warning("chat_turn_rejected", error=str(e))
                yield ErrorEvent(error=str(e))
                return
            except Exception as e:
                log.exception("chat_retrieval_failed", error_type=type(e).__name__)
                yield ErrorEvent(error="Failed to retrieve context for this message")
                return

            # Streaming synthesis
            parts: list[str] = []
            try:
                async with aclosing(
                    self.completion.stream(persona, context, history, message)
                ) as tokens:
                    async for delta in tokens:
                        parts.append(delta)
                        yield ContentEvent(content=delta)
            except Exception as e:
                log.exception("chat_generation_failed", error_type=type(e).__name__)
                yield ErrorEvent(error=GENERATION_FAILED)
                return

            answer = "".join(parts)
            references = await self._select_references(context, answer, log)
            if references:
                yield ReferencesEvent(references=references)

            try:
                message_id = await self.chat_store.add_message(
                    chat_session_id, persona.id, user_id, "assistant", answer, references
                )
            except Exception as e:
                log.exception("chat_message_store_failed", error_type=type(e).__name__)
                yield ErrorEvent(error="Failed to save response")
                return

            log.info(
                "chat_turn_completed",
                message_id=message_id,
                answer_length=len(answer),
                context=len(context),
                references=len(references),
            )
            yield CompleteEvent(message_id=message_id, chat_session_id=chat_session_id)

        except (GeneratorExit, asyncio.CancelledError):
            log.info("chat_stream_cancelled")
            raise

    async def _select_references(self, context, answer, log) -> list[VideoReference]:
        """Select and validate references; any failure yields none."""
        if not context or not answer:
            return []
        try:
            claims = await self.completion.select_citations(context, answer)
        except Exception as e:
            log.warning(
                "citation_selection_failed",
                error_type=type(e).__name__,
                error=str(e),
            )
            return []
        return validate_references(claims, context, self.config.max_references)
