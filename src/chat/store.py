"""Chat session and message persistence in Supabase."""

from datetime import UTC, datetime
from typing import Literal

from supabase import Client

from src.pipeline.errors import NotFoundError
from src.utils.logging import get_logger

from .schemas import ChatMessage, ChatSession, VideoReference

logger = get_logger(__name__)

SESSION_TITLE_LENGTH = 50


def session_title(message: str) -> str:
    """Default title for a session started with ``message``."""
    title = " ".join(message.split())
    if len(title) > SESSION_TITLE_LENGTH:
        title = title[: SESSION_TITLE_LENGTH - 3].rstrip() + "..."
    return title or "New chat"


class ChatStore:
    """Reads and writes ``chat_sessions`` and ``messages`` rows."""

    def __init__(self, client: Client):
        self.client = client

    async def create_session(
        self, persona_id: str, user_id: str | None, title: str
    ) -> str:
        """Create a chat session and return its id."""
        response = (
            self.client.table("chat_sessions")
            .insert({"persona_id": persona_id, "user_id": user_id, "title": title})
            .execute()
        )
        session_id: str = response.data[0]["id"]
        logger.info("chat_session_created", chat_session_id=session_id, persona_id=persona_id)
        return session_id

    async def get_session(self, session_id: str) -> ChatSession:
        """Fetch a chat session.

        Raises:
            NotFoundError: If the session does not exist.
        """
        response = (
            self.client.table("chat_sessions").select("*").eq("id", session_id).execute()
        )
        if not response.data:
            raise NotFoundError(f"Chat session not found: {session_id}")
        return ChatSession.model_validate(response.data[0])

    async def update_title(self, session_id: str, title: str) -> ChatSession:
        """Rename a chat session.

        Raises:
            NotFoundError: If the session does not exist.
        """
        response = (
            self.client.table("chat_sessions")
            .update({"title": title, "updated_at": datetime.now(UTC).isoformat()})
            .eq("id", session_id)
            .execute()
        )
        if not response.data:
            raise NotFoundError(f"Chat session not found: {session_id}")
        logger.info("chat_session_renamed", chat_session_id=session_id)
        return ChatSession.model_validate(response.data[0])

    async def add_message(
        self,
        session_id: str,
        persona_id: str,
        user_id: str | None,
        role: Literal["user", "assistant"],
        content: str,
        references: list[VideoReference] | None = None,
    ) -> str:
        """Append a message to a session and return its id."""
        response = (
            self.client.table("messages")
            .insert(
                {
                    "chat_session_id": session_id,
                    "persona_id": persona_id,
                    "user_id": user_id,
                    "role": role,
                    "content": content,
                    "video_references": (
                        [r.model_dump() for r in references] if references else None
                    ),
                }
            )
            .execute()
        )
        # Keep the session sorted by last activity
        self.client.table("chat_sessions").update(
            {"updated_at": datetime.now(UTC).isoformat()}
        ).eq("id", session_id).execute()

        message_id: str = response.data[0]["id"]
        logger.info(
            "chat_message_stored",
            chat_session_id=session_id,
            message_id=message_id,
            role=role,
            references=len(references or []),
        )
        return message_id

    async def list_recent_messages(self, session_id: str, limit: int = 20) -> list[ChatMessage]:
        """Return the last ``limit`` messages of a session, oldest first."""
        response = (
            self.client.table("messages")
            .select("*")
            .eq("chat_session_id", session_id)
            .order("created_at", desc=True)
            .limit(limit)
            .execute()
        )
        rows = list(reversed(response.data or []))
        return [ChatMessage.model_validate(row) for row in rows]
