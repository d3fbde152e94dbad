"""Namespaced vector store backed by a pgvector table in Supabase."""

from typing import Any

from pydantic import BaseModel, Field
from supabase import Client

from src.utils.logging import get_logger

logger = get_logger(__name__)

VECTORS_TABLE = "caption_embeddings"
MATCH_FUNCTION = "match_caption_embeddings"


class VectorMatch(BaseModel):
    """A nearest-neighbour hit returned by ``VectorStore.query``."""

    id: str
    score: float
    metadata: dict[str, Any] = Field(default_factory=dict)


class VectorStore:
    """Upsert and query caption vectors, one namespace per channel.

    Upserts are keyed by vector id, so writing the same caption twice is
    harmless. The embedding stage relies on that when a flag update fails
    after a successful upsert.
    """

    def __init__(self, client: Client):
        self.client = client

    async def upsert(
        self,
        namespace: str,
        vector_id: str,
        vector: list[float],
        metadata: dict[str, Any],
    ) -> None:
        """Insert or overwrite one vector in ``namespace``."""
        try:
            self.client.table(VECTORS_TABLE).upsert(
                {
                    "id": vector_id,
                    "namespace": namespace,
                    "embedding": vector,
                    "metadata": metadata,
                },
                on_conflict="id",
            ).execute()
            logger.debug("vector_upserted", namespace=namespace, vector_id=vector_id)

        except Exception as e:
            logger.exception(
                "vector_upsert_failed",
                namespace=namespace,
                vector_id=vector_id,
                error_type=type(e).__name__,
            )
            raise

    async def query(
        self, namespace: str, vector: list[float], top_k: int = 10
    ) -> list[VectorMatch]:
        """Return the ``top_k`` nearest vectors in ``namespace`` by cosine similarity.

        Raises:
            Exception: If the search RPC fails.
        """
        try:
            response = self.client.rpc(
                MATCH_FUNCTION,
                {
                    "query_embedding": vector,
                    "match_namespace": namespace,
                    "match_count": top_k,
                },
            ).execute()

            matches = [
                VectorMatch(
                    id=str(row["id"]),
                    score=float(row.get("similarity", 0.0)),
                    metadata=row.get("metadata") or {},
                )
                for row in response.data or []
            ]
            logger.info(
                "vector_search_completed",
                namespace=namespace,
                results=len(matches),
                top_k=top_k,
            )
            return matches

        except Exception as e:
            logger.exception(
                "vector_search_failed",
                namespace=namespace,
                error_type=type(e).__name__,
            )
            raise

    async def delete(self, namespace: str, vector_ids: list[str]) -> None:
        """Remove vectors by id from ``namespace``; unknown ids are ignored."""
        if not vector_ids:
            return
        try:
            self.client.table(VECTORS_TABLE).delete().eq("namespace", namespace).in_(
                "id", vector_ids
            ).execute()
            logger.info("vectors_deleted", namespace=namespace, count=len(vector_ids))

        except Exception as e:
            logger.exception(
                "vector_delete_failed",
                namespace=namespace,
                count=len(vector_ids),
                error_type=type(e).__name__,
            )
            raise
