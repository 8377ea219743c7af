"""Provider-neutral structured completion for the changelog summarizer.

Providers only implement ``complete_json``; retrying, fence stripping and
schema validation live here so every provider fails the same way.
"""

import logging
from abc import ABC, abstractmethod
from typing import Optional, Type, TypeVar

from pydantic import BaseModel
from tenacity import before_sleep_log, retry, stop_after_attempt, wait_exponential

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)


class AIServiceError(Exception):
    """The AI text service gave no usable answer after all attempts."""

    def __init__(self, model_id: str, schema_name: str, cause: Exception):
        self.model_id = model_id
        self.schema_name = schema_name
        self.cause = cause
        super().__init__(f"{model_id} gave no valid {schema_name}: {type(cause).__name__}: {cause}")


def strip_code_fences(raw: str) -> str:
    """Remove a surrounding ```json fence some models add anyway."""
    stripped = raw.strip()
    if not stripped.startswith("```"):
        return stripped
    first_newline = stripped.find("\n")
    stripped = stripped[first_newline + 1:] if first_newline != -1 else ""
    if stripped.endswith("```"):
        stripped = stripped[:-3].rstrip()
    return stripped


def parse_structured(raw: Optional[str], schema: Type[T]) -> T:
    """Validate a model reply against ``schema``.

    Raises:
        ValueError: Empty reply
        pydantic.ValidationError: Reply is not JSON matching the schema
    """
    if not raw or not raw.strip():
        raise ValueError(f"Empty reply for {schema.__name__}")
    return schema.model_validate_json(strip_code_fences(raw))


class LLMAdapter(ABC):
    """Async text generation that returns a validated pydantic object."""

    provider = "llm"

    def __init__(self, model_id: str) -> None:
        self.model_id = model_id

    @abstractmethod
    async def complete_json(
        self,
        prompt: str,
        schema: Type[BaseModel],
        *,
        temperature: float,
        system_prompt: Optional[str],
    ) -> str:
        """Raw model reply that should contain one JSON object for ``schema``."""
        ...

    async def generate_text(
        self,
        prompt: str,
        schema: Type[T],
        *,
        temperature: float = 0.7,
        system_prompt: Optional[str] = None,
        max_retries: int = 3,
    ) -> T:
        """Generate and validate structured output.

        Args:
            prompt: The user prompt to send to the model.
            schema: Pydantic model class defining the expected output structure.
            temperature: Sampling temperature (0.0-1.0). Lower = more deterministic.
            system_prompt: Optional system/instruction prompt.
            max_retries: Attempts before giving up. Malformed replies count as failures.

        Raises:
            AIServiceError: Every attempt failed
        """

        @retry(
            stop=stop_after_attempt(max(1, max_retries)),
            wait=wait_exponential(multiplier=1, min=2, max=30),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        async def _call() -> T:
            raw = await self.complete_json(
                prompt, schema, temperature=temperature, system_prompt=system_prompt
            )
            return parse_structured(raw, schema)

        logger.debug("%s %s -> %s", self.provider, self.model_id, schema.__name__)
        try:
            return await _call()
        except Exception as e:
            # Provider SDKs raise their own exception hierarchies
            raise AIServiceError(self.model_id, schema.__name__, e) from e
