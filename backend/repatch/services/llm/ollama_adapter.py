"""Ollama provider for local or cloud Ollama deployments.

Ollama Cloud does not reliably enforce a JSON schema passed as ``format``,
so the schema travels in the system prompt and ``format='json'`` only asks
for a JSON object.
"""

import json
import logging
from typing import Optional, Type

from ollama import AsyncClient
from pydantic import BaseModel

from repatch.services.llm.base import LLMAdapter

logger = logging.getLogger(__name__)

JSON_ONLY_INSTRUCTION = (
    "Reply with exactly one JSON object matching the schema below. "
    "No Markdown fences, no commentary before or after it."
)


def schema_prompt(schema: Type[BaseModel], system_prompt: Optional[str] = None) -> str:
    """System prompt carrying the caller's instructions plus the output schema."""
    parts = [system_prompt.strip()] if system_prompt and system_prompt.strip() else []
    parts.append(JSON_ONLY_INSTRUCTION)
    parts.append(json.dumps(schema.model_json_schema(), indent=2))
    return "\n\n".join(parts)


class OllamaAdapter(LLMAdapter):
    """Ollama chat completion. Model IDs drop the "ollama/" prefix on the wire."""

    provider = "ollama"

    def __init__(
        self,
        model_id: str,
        base_url: str = "http://localhost:11434",
        api_key: Optional[str] = None,
    ) -> None:
        super().__init__(model_id)
        self.ollama_model = model_id.removeprefix("ollama/")
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        self._client = AsyncClient(host=base_url, headers=headers)

    async def complete_json(
        self,
        prompt: str,
        schema: Type[BaseModel],
        *,
        temperature: float,
        system_prompt: Optional[str],
    ) -> str:
        response = await self._client.chat(
            model=self.ollama_model,
            messages=[
                {"role": "system", "content": schema_prompt(schema, system_prompt)},
                {"role": "user", "content": prompt},
            ],
            format="json",
            options={"temperature": temperature},
            stream=False,
        )
        return response.message.content or ""
