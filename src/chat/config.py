"""LLM settings for persona replies and reference selection.

Both models talk to the same OpenAI-compatible endpoint; only the model name
can differ, so a cheaper model can be used for the structured citation call.
"""

import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic_ai.models.openai import OpenAIModel
from pydantic_ai.providers.openai import OpenAIProvider

DEFAULT_LLM = "gpt-4o-mini"

# Outside production a local .env wins over the shell environment
if os.getenv("ENVIRONMENT") == "production":
    load_dotenv()
else:
    load_dotenv(Path(__file__).resolve().parents[2] / ".env", override=True)


def _build_model(name: str) -> OpenAIModel:
    provider = OpenAIProvider(
        base_url=os.getenv("LLM_BASE_URL") or "https://api.openai.com/v1",
        # Local OpenAI-compatible servers accept any key
        api_key=os.getenv("LLM_API_KEY") or "ollama",
    )
    return OpenAIModel(name, provider=provider)


def get_model() -> OpenAIModel:
    """Model that writes persona replies (LLM_CHOICE)."""
    return _build_model(os.getenv("LLM_CHOICE") or DEFAULT_LLM)


def get_citation_model() -> OpenAIModel:
    """Model that selects references (CITATION_LLM_CHOICE, else LLM_CHOICE)."""
    return _build_model(
        os.getenv("CITATION_LLM_CHOICE") or os.getenv("LLM_CHOICE") or DEFAULT_LLM
    )
