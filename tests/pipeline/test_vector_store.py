"""Unit tests for the pgvector-backed vector store."""

from unittest.mock import MagicMock

import pytest

from src.pipeline.vector_store import MATCH_FUNCTION, VECTORS_TABLE, VectorStore


@pytest.mark.unit
class TestVectorStore:
    @pytest.fixture
    def client(self) -> MagicMock:
        return MagicMock()

    @pytest.fixture
    def store(self, client: MagicMock) -> VectorStore:
        return VectorStore(client)

    @pytest.mark.asyncio
    async def test_upsert_is_keyed_by_vector_id(self, store: VectorStore, client: MagicMock) -> None:
        await store.upsert("uccreator", "cap-1", [0.1, 0.2], {"video_id": "v1"})

        client.table.assert_called_once_with(VECTORS_TABLE)
        client.table.return_value.upsert.assert_called_once_with(
            {
                "id": "cap-1",
                "namespace": "uccreator",
                "embedding": [0.1, 0.2],
                "metadata": {"video_id": "v1"},
            },
            on_conflict="id",
        )

    @pytest.mark.asyncio
    async def test_upsert_propagates_errors(self, store: VectorStore, client: MagicMock) -> None:
        client.table.return_value.upsert.return_value.execute.side_effect = Exception("timeout")

        with pytest.raises(Exception, match="timeout"):
            await store.upsert("uccreator", "cap-1", [0.1], {})

    @pytest.mark.asyncio
    async def test_query_maps_rows_to_matches(self, store: VectorStore, client: MagicMock) -> None:
        client.rpc.return_value.execute.return_value.data = [
            {"id": "cap-1", "similarity": 0.91, "metadata": {"video_id": "v1"}},
            {"id": "cap-2", "similarity": 0.42, "metadata": None},
        ]

        matches = await store.query("uccreator", [0.1, 0.2], top_k=2)

        client.rpc.assert_called_once_with(
            MATCH_FUNCTION,
            {"query_embedding": [0.1, 0.2], "match_namespace": "uccreator", "match_count": 2},
        )
        assert [(m.id, m.score) for m in matches] == [("cap-1", 0.91), ("cap-2", 0.42)]
        assert matches[1].metadata == {}

    @pytest.mark.asyncio
    async def test_empty_namespace_returns_nothing(
        self, store: VectorStore, client: MagicMock
    ) -> None:
        client.rpc.return_value.execute.return_value.data = []

        assert await store.query("empty", [0.1]) == []

    @pytest.mark.asyncio
    async def test_delete_is_scoped_to_namespace(self, store: VectorStore, client: MagicMock) -> None:
        await store.delete("uccreator", ["cap-1", "cap-2"])

        client.table.assert_called_once_with(VECTORS_TABLE)
        deleted = client.table.return_value.delete.return_value
        deleted.eq.assert_called_once_with("namespace", "uccreator")
        deleted.eq.return_value.in_.assert_called_once_with("id", ["cap-1", "cap-2"])

    @pytest.mark.asyncio
    async def test_delete_without_ids_is_noop(self, store: VectorStore, client: MagicMock) -> None:
        await store.delete("uccreator", [])

        client.table.assert_not_called()
