"""
Text-generation capability behind each negotiation turn.

The negotiator only depends on the ``TextGenerator`` protocol, so tests can
substitute a deterministic stub. ``OpenAITextGenerator`` is the production
implementation on top of the OpenAI chat completions API.
"""

import logging
from typing import Optional, Protocol, Sequence

from openai import AsyncOpenAI, OpenAIError

from schedulink.config import ModelConfig, settings

logger = logging.getLogger(__name__)

ChatMessage = dict[str, str]


class GenerationFailure(Exception):
    """Raised when the text-generation collaborator cannot produce a turn."""


class TextGenerator(Protocol):
    async def generate(self, messages: Sequence[ChatMessage]) -> str:
        """Return generated text for a chat-style prompt, or raise GenerationFailure."""
        ...


class OpenAITextGenerator:
    """Chat-completions backed generator. Not retried on failure."""

    def __init__(
        self,
        client: Optional[AsyncOpenAI] = None,
        model_config: Optional[ModelConfig] = None,
    ) -> None:
        self._config = model_config or settings.model
        self._client = client or AsyncOpenAI(timeout=self._config.llm_timeout_sec)

    async def generate(self, messages: Sequence[ChatMessage]) -> str:
        try:
            response = await self._client.chat.completions.create(
                model=self._config.llm_model,
                messages=list(messages),
                temperature=self._config.llm_temperature,
                max_tokens=self._config.llm_max_tokens,
            )
        except OpenAIError as exc:
            logger.error("Text generation failed: %s", exc)
            raise GenerationFailure(str(exc)) from exc

        content = ""
        if response.choices:
            content = (response.choices[0].message.content or "").strip()
        if not content:
            raise GenerationFailure("Text generation returned an empty message")
        return content
