"""Unit tests for chat session persistence."""

from unittest.mock import MagicMock

import pytest

from src.chat.schemas import VideoReference
from src.chat.store import ChatStore, session_title
from src.pipeline.errors import NotFoundError


@pytest.mark.unit
class TestSessionTitle:
    def test_short_message_is_kept(self) -> None:
        assert session_title("How do   you sharpen\na chisel?") == "How do you sharpen a chisel?"

    def test_long_message_is_truncated(self) -> None:
        title = session_title("word " * 30)

        assert len(title) <= 50
        assert title.endswith("...")

    def test_blank_message_gets_default(self) -> None:
        assert session_title("   ") == "New chat"


@pytest.mark.unit
class TestChatStore:
    """Test suite for ChatStore class."""

    @pytest.fixture
    def client(self) -> MagicMock:
        return MagicMock()

    @pytest.fixture
    def store(self, client: MagicMock) -> ChatStore:
        return ChatStore(client)

    @pytest.mark.asyncio
    async def test_create_session(self, store: ChatStore, client: MagicMock) -> None:
        client.table.return_value.insert.return_value.execute.return_value.data = [
            {"id": "session-1"}
        ]

        session_id = await store.create_session("persona-1", "user-1", "Chisels")

        assert session_id == "session-1"
        client.table.return_value.insert.assert_called_once_with(
            {"persona_id": "persona-1", "user_id": "user-1", "title": "Chisels"}
        )

    @pytest.mark.asyncio
    async def test_update_title_of_missing_session(
        self, store: ChatStore, client: MagicMock
    ) -> None:
        client.table.return_value.update.return_value.eq.return_value.execute.return_value.data = []

        with pytest.raises(NotFoundError):
            await store.update_title("missing", "New title")

    @pytest.mark.asyncio
    async def test_add_message_stores_references(
        self, store: ChatStore, client: MagicMock
    ) -> None:
        client.table.return_value.insert.return_value.execute.return_value.data = [
            {"id": "msg-1"}
        ]
        reference = VideoReference(video_id="v1", title="Bench", timestamp=34, confidence=0.9)

        message_id = await store.add_message(
            "session-1", "persona-1", None, "assistant", "Answer", [reference]
        )

        assert message_id == "msg-1"
        row = client.table.return_value.insert.call_args[0][0]
        assert row["role"] == "assistant"
        assert row["video_references"] == [
            {"video_id": "v1", "title": "Bench", "timestamp": 34.0, "confidence": 0.9}
        ]
        client.table.assert_any_call("chat_sessions")

    @pytest.mark.asyncio
    async def test_add_message_without_references(
        self, store: ChatStore, client: MagicMock
    ) -> None:
        client.table.return_value.insert.return_value.execute.return_value.data = [
            {"id": "msg-2"}
        ]

        await store.add_message("session-1", "persona-1", "user-1", "user", "Question")

        row = client.table.return_value.insert.call_args[0][0]
        assert row["video_references"] is None

    @pytest.mark.asyncio
    async def test_recent_messages_are_returned_oldest_first(
        self, store: ChatStore, client: MagicMock
    ) -> None:
        query = client.table.return_value.select.return_value.eq.return_value.order.return_value
        query.limit.return_value.execute.return_value.data = [
            {"id": "m2", "chat_session_id": "s1", "role": "assistant", "content": "Hi"},
            {"id": "m1", "chat_session_id": "s1", "role": "user", "content": "Hello"},
        ]

        messages = await store.list_recent_messages("s1", limit=2)

        assert [m.id for m in messages] == ["m1", "m2"]
        query.limit.assert_called_once_with(2)
