"""Model ID to provider routing: ``ollama/*`` to Ollama, anything else to Vertex AI."""

import logging
from typing import Optional

from repatch.config import OllamaConfig, settings
from repatch.services.llm.base import LLMAdapter

logger = logging.getLogger(__name__)

LOCAL_OLLAMA_URL = "http://localhost:11434"
CLOUD_OLLAMA_URL = "https://ollama.com"


def ollama_connection(cfg: OllamaConfig) -> tuple[str, Optional[str]]:
    """(base_url, api_key) for an Ollama deployment. Only the cloud uses a key."""
    if cfg.use_cloud:
        return cfg.endpoint or CLOUD_OLLAMA_URL, cfg.api_key or None
    return cfg.endpoint or LOCAL_OLLAMA_URL, None


def get_adapter(model_id: str, ollama: Optional[OllamaConfig] = None) -> LLMAdapter:
    """Adapter for ``model_id`` such as "gemini-2.5-flash" or "ollama/llama3.1"."""
    if model_id.startswith("ollama/"):
        from repatch.services.llm.ollama_adapter import OllamaAdapter

        base_url, api_key = ollama_connection(ollama or settings.ollama)
        logger.debug("Summarizer model %s on Ollama at %s", model_id, base_url)
        return OllamaAdapter(model_id, base_url=base_url, api_key=api_key)

    from repatch.services.llm.vertex_adapter import VertexAIAdapter

    logger.debug("Summarizer model %s on Vertex AI", model_id)
    return VertexAIAdapter(model_id)
