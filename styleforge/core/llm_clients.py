"""
LLM client abstraction for Google Gemini.
Used for tone-shift classification during style delta extraction.
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Optional

import google.generativeai as genai
import structlog
from google.api_core import exceptions as google_exceptions
from pydantic import BaseModel

from styleforge.core.config import Settings
from styleforge.core.exceptions import TransientExternalError

logger = structlog.get_logger(__name__)


class LLMMessage(BaseModel):
    """Message format for LLM conversations."""
    role: str  # "system", "user", "assistant"
    content: str


class LLMResponse(BaseModel):
    """Standardized LLM response."""
    content: str
    model: str
    tokens_used: int
    prompt_tokens: int
    completion_tokens: int


class BaseLLMClient(ABC):
    """Abstract base class for LLM clients."""

    @abstractmethod
    async def generate(
        self,
        messages: list[LLMMessage],
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> LLMResponse:
        """Generate completion from messages."""
        pass


class GeminiClient(BaseLLMClient):
    """
    Google Gemini API client.

    Does not retry on its own: network and quota failures surface as
    TransientExternalError and the extraction layer owns the retry policy.
    """

    def __init__(self, settings: Settings):
        self.settings = settings
        genai.configure(api_key=settings.google_api_key)
        self.default_model = settings.google_model_fast

    def _convert_messages(self, messages: list[LLMMessage]) -> tuple[str, list[dict]]:
        """Convert messages to Gemini format, extracting system instruction."""
        system_instruction = ""
        gemini_messages = []

        for msg in messages:
            if msg.role == "system":
                system_instruction = msg.content
            elif msg.role == "user":
                gemini_messages.append({"role": "user", "parts": [msg.content]})
            elif msg.role == "assistant":
                gemini_messages.append({"role": "model", "parts": [msg.content]})

        return system_instruction, gemini_messages

    async def generate(
        self,
        messages: list[LLMMessage],
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> LLMResponse:
        """Generate completion using Gemini API."""
        model_name = model or self.default_model
        system_instruction, gemini_messages = self._convert_messages(messages)

        logger.debug("Gemini request", model=model_name, message_count=len(messages))

        generation_config = genai.GenerationConfig(
            temperature=temperature if temperature is not None else 0.0,
            max_output_tokens=max_tokens or 64,
        )
        model_instance = genai.GenerativeModel(
            model_name=model_name,
            system_instruction=system_instruction if system_instruction else None,
            generation_config=generation_config,
        )

        def _generate():
            chat = model_instance.start_chat(history=gemini_messages[:-1] if len(gemini_messages) > 1 else [])
            last_message = gemini_messages[-1]["parts"][0] if gemini_messages else ""
            return chat.send_message(last_message)

        # genai is sync; run in executor
        loop = asyncio.get_running_loop()
        try:
            response = await asyncio.wait_for(
                loop.run_in_executor(None, _generate),
                timeout=self.settings.llm_timeout,
            )
        except (TimeoutError, asyncio.TimeoutError, ConnectionError) as e:
            raise TransientExternalError(f"Gemini request failed: {e!r}") from e
        except google_exceptions.GoogleAPIError as e:
            raise TransientExternalError(f"Gemini API error: {e}") from e

        try:
            text = response.text or ""
        except ValueError:
            # Raised by the SDK when the candidate was blocked
            text = ""
        if not text:
            raise TransientExternalError("Gemini API returned empty response")

        prompt_tokens = getattr(response.usage_metadata, "prompt_token_count", 0)
        completion_tokens = getattr(response.usage_metadata, "candidates_token_count", 0)

        return LLMResponse(
            content=text,
            model=model_name,
            tokens_used=prompt_tokens + completion_tokens,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
        )
