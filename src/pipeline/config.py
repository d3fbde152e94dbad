"""Configuration module for the content pipeline and retrieval engine."""

import os

from dotenv import load_dotenv
from pydantic import BaseModel, Field

# Load environment variables from .env file
load_dotenv()


class PipelineConfig(BaseModel):
    """Configuration for the content pipeline.

    Covers the relational store, the external collaborators (catalog, scraper,
    embeddings), the job queue defaults, caption windowing, embedding batching
    and chat-time retrieval. All settings can be overridden via environment
    variables.
    """

    # Database settings
    supabase_url: str = Field(default_factory=lambda: os.getenv("SUPABASE_URL", ""))
    supabase_key: str = Field(
        default_factory=lambda: os.getenv("SUPABASE_SERVICE_KEY", "")
    )

    # Catalog (YouTube Data API) settings
    youtube_api_key: str = Field(
        default_factory=lambda: os.getenv("YOUTUBE_API_KEY", "")
    )
    catalog_page_size: int = Field(
        default_factory=lambda: int(os.getenv("CATALOG_PAGE_SIZE", "50"))
    )

    # Scraping (Supadata) settings
    supadata_api_key: str = Field(
        default_factory=lambda: os.getenv("SUPADATA_API_KEY", "")
    )
    caption_lang: str = Field(default_factory=lambda: os.getenv("CAPTION_LANG", "en"))

    # Embedding settings
    embedding_provider: str = Field(
        default_factory=lambda: os.getenv("EMBEDDING_PROVIDER", "openai")
    )
    embedding_base_url: str = Field(
        default_factory=lambda: os.getenv(
            "EMBEDDING_BASE_URL", "https://api.openai.com/v1"
        )
    )
    embedding_api_key: str = Field(
        default_factory=lambda: os.getenv("EMBEDDING_API_KEY", "")
    )
    embedding_model: str = Field(
        default_factory=lambda: os.getenv(
            "EMBEDDING_MODEL_CHOICE", "text-embedding-3-small"
        )
    )
    # Width of the caption_embeddings vector column; 0 disables the check
    embedding_dimensions: int = Field(
        default_factory=lambda: int(os.getenv("EMBEDDING_DIMENSIONS", "1536"))
    )
    embedding_page_size: int = Field(
        default_factory=lambda: int(os.getenv("EMBEDDING_PAGE_SIZE", "100"))
    )
    embedding_concurrency: int = Field(
        default_factory=lambda: int(os.getenv("EMBEDDING_CONCURRENCY", "10"))
    )

    # Job queue settings
    discovery_max_retries: int = Field(
        default_factory=lambda: int(os.getenv("DISCOVERY_MAX_RETRIES", "3"))
    )
    extraction_max_retries: int = Field(
        default_factory=lambda: int(os.getenv("EXTRACTION_MAX_RETRIES", "3"))
    )
    embedding_max_retries: int = Field(
        default_factory=lambda: int(os.getenv("EMBEDDING_MAX_RETRIES", "3"))
    )
    extraction_poll_seconds: int = Field(
        default_factory=lambda: int(os.getenv("EXTRACTION_POLL_SECONDS", "30"))
    )
    # A caption run still pending after this long counts as failed; 0 disables
    extraction_run_timeout_seconds: int = Field(
        default_factory=lambda: int(os.getenv("EXTRACTION_RUN_TIMEOUT_SECONDS", "1800"))
    )
    # Running jobs not finished within the lease can be claimed again
    job_lease_seconds: int = Field(
        default_factory=lambda: int(os.getenv("JOB_LEASE_SECONDS", "900"))
    )
    worker_interval_seconds: int = Field(
        default_factory=lambda: int(os.getenv("WORKER_INTERVAL_SECONDS", "10"))
    )

    # Caption windowing settings (time-based)
    chunk_duration_seconds: float = Field(
        default_factory=lambda: float(os.getenv("CHUNK_DURATION_SECONDS", "40"))
    )
    chunk_overlap_percent: float = Field(
        default_factory=lambda: float(os.getenv("CHUNK_OVERLAP_PERCENT", "15"))
    )

    # Retrieval settings
    retrieval_top_k: int = Field(
        default_factory=lambda: int(os.getenv("RETRIEVAL_TOP_K", "10"))
    )
    similarity_threshold: float = Field(
        default_factory=lambda: float(os.getenv("SIMILARITY_THRESHOLD", "0.5"))
    )
    max_references: int = Field(
        default_factory=lambda: int(os.getenv("MAX_REFERENCES", "5"))
    )
    chat_history_limit: int = Field(
        default_factory=lambda: int(os.getenv("CHAT_HISTORY_LIMIT", "20"))
    )


def get_config() -> PipelineConfig:
    """Get validated configuration instance.

    Returns:
        PipelineConfig: Validated configuration object with all settings.

    Raises:
        ValidationError: If environment variables hold invalid values.
    """
    return PipelineConfig()
