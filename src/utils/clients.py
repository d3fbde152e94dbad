"""Client initialization utilities.

External service clients (Supabase, OpenAI-compatible embeddings) are created
once per process and passed into every service that needs them.
"""

from dataclasses import dataclass

from openai import AsyncOpenAI
from supabase import Client, create_client

from src.pipeline.config import PipelineConfig
from src.pipeline.embedding_service import build_embedding_client


@dataclass
class Clients:
    """Process-wide collaborator clients.

    Attributes:
        supabase: Supabase client for the relational store and vector table.
        embedding: AsyncOpenAI client for generating embeddings.
    """

    supabase: Client
    embedding: AsyncOpenAI


def get_clients(config: PipelineConfig) -> Clients:
    """Initialize and return the shared clients.

    Args:
        config: Pipeline configuration holding URLs and credentials.

    Returns:
        Clients bundle.

    Raises:
        ValueError: If required settings are missing.

    Examples:
        >>> clients = get_clients(get_config())
        >>> storage = StorageService(clients.supabase)
    """
    if not config.supabase_url or not config.supabase_key:
        raise ValueError("SUPABASE_URL and SUPABASE_SERVICE_KEY environment variables are required")

    if config.embedding_provider != "ollama" and not config.embedding_api_key:
        raise ValueError("EMBEDDING_API_KEY environment variable is required")

    return Clients(
        supabase=create_client(config.supabase_url, config.supabase_key),
        embedding=build_embedding_client(config),
    )
