"""Text embeddings for caption chunks and chat queries.

Captions and user queries go through the same model so that they share one
vector space. The vector column is fixed-width, so every embedding is checked
against the configured dimension before it can reach the store.
"""

from openai import AsyncOpenAI

from src.utils.logging import get_logger

from .config import PipelineConfig

logger = get_logger(__name__)


class EmbeddingDimensionError(ValueError):
    """The provider returned a vector of the wrong width for the store."""


def build_embedding_client(config: PipelineConfig) -> AsyncOpenAI:
    """Create the AsyncOpenAI client for the configured provider.

    Ollama ignores the key but the client requires one, so a placeholder is
    sent. OpenAI, OpenRouter and other compatible providers use the
    configured key.
    """
    api_key = "ollama" if config.embedding_provider == "ollama" else config.embedding_api_key
    return AsyncOpenAI(base_url=config.embedding_base_url, api_key=api_key)


class EmbeddingService:
    """Embeds one text per call through an OpenAI-compatible endpoint."""

    def __init__(self, config: PipelineConfig, client: AsyncOpenAI | None = None):
        self.config = config
        self.model = config.embedding_model
        self.dimensions = config.embedding_dimensions
        self.client = client or build_embedding_client(config)
        logger.info(
            "embedding_service_initialized",
            provider=config.embedding_provider,
            model=self.model,
            dimensions=self.dimensions,
        )

    async def embed_text(self, text: str) -> list[float]:
        """Embed ``text`` and return its vector.

        Raises:
            EmbeddingDimensionError: If the vector width does not match
                ``embedding_dimensions``.
            Exception: Provider errors propagate unchanged.
        """
        try:
            response = await self.client.embeddings.create(input=text, model=self.model)
        except Exception as e:
            logger.exception(
                "embedding_request_failed",
                model=self.model,
                text_length=len(text),
                error_type=type(e).__name__,
            )
            raise

        vector = response.data[0].embedding
        if self.dimensions and len(vector) != self.dimensions:
            logger.error(
                "embedding_dimension_mismatch",
                model=self.model,
                expected=self.dimensions,
                received=len(vector),
            )
            raise EmbeddingDimensionError(
                f"{self.model} returned {len(vector)} dimensions, expected {self.dimensions}"
            )

        return vector
