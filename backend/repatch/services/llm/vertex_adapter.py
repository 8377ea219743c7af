"""Gemini on Vertex AI via the google-genai SDK, with JSON-schema output."""

from typing import Optional, Type

from google.genai import types as genai_types
from pydantic import BaseModel

from repatch.services.llm.base import LLMAdapter
from repatch.services.vertex_client import get_vertex_client, location_for_model


class VertexAIAdapter(LLMAdapter):
    """Gemini structured output; the SDK enforces the response schema."""

    provider = "vertex"

    async def complete_json(
        self,
        prompt: str,
        schema: Type[BaseModel],
        *,
        temperature: float,
        system_prompt: Optional[str],
    ) -> str:
        client = get_vertex_client(location_for_model(self.model_id))
        response = await client.aio.models.generate_content(
            model=self.model_id,
            contents=prompt,
            config=genai_types.GenerateContentConfig(
                temperature=temperature,
                response_mime_type="application/json",
                response_schema=schema,
                system_instruction=system_prompt or None,
            ),
        )
        return response.text or ""
