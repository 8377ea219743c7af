"""AI text providers for the changelog summarizer.

    from repatch.services.llm import get_adapter

    adapter = get_adapter("gemini-2.5-flash")      # Vertex AI
    adapter = get_adapter("ollama/llama3.1")       # Ollama
    notes = await adapter.generate_text(prompt, ChangelogOutput)
"""

from repatch.services.llm.base import AIServiceError, LLMAdapter
from repatch.services.llm.registry import get_adapter

__all__ = ["AIServiceError", "LLMAdapter", "get_adapter"]
