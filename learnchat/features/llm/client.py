"""
learnchat/features/llm/client.py

Text-generation capability backed by the Groq SDK.

Accepts a model id, system instructions, a role-alternating message list
and an output cap; returns the text plus token usage counters. Timeouts
and provider errors surface as GenerationError so callers can treat them
the same way.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

import groq

from learnchat.core.config import settings
from learnchat.core.errors import AppError, ConfigError
from learnchat.core.metrics import llm_failures_total

logger = logging.getLogger(__name__)


class GenerationError(AppError):
    """The provider failed, timed out or returned nothing usable."""
    code = "AI_ERROR"
    status_code = 502


@dataclass(frozen=True)
class Generation:
    text: str
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


class TextGenerator:
    def __init__(self, client=None, api_key: Optional[str] = None, timeout: Optional[float] = None):
        self._client = client
        self._api_key = api_key
        self._timeout = timeout if timeout is not None else settings.LLM_TIMEOUT_SECONDS

    @property
    def client(self):
        if self._client is None:
            api_key = self._api_key or settings.GROQ_API_KEY
            if not api_key:
                raise ConfigError("GROQ_API_KEY is not configured")
            self._client = groq.Groq(api_key=api_key, timeout=self._timeout)
        return self._client

    def generate(
        self,
        *,
        model: str,
        system: str,
        messages: List[Dict[str, str]],
        max_tokens: int,
        purpose: str = "chat",
        temperature: Optional[float] = None,
    ) -> Generation:
        payload = [{"role": "system", "content": system}] + list(messages)
        kwargs = {"messages": payload, "model": model, "max_tokens": max_tokens}
        if temperature is not None:
            kwargs["temperature"] = temperature

        client = self.client
        try:
            response = client.chat.completions.create(**kwargs)
        except groq.APIError as exc:
            llm_failures_total.inc(labels={"purpose": purpose})
            logger.warning("llm.failed", extra={"purpose": purpose, "model": model, "error": str(exc)})
            raise GenerationError(f"Text generation failed: {exc.__class__.__name__}") from exc

        text = ""
        if response.choices:
            text = response.choices[0].message.content or ""
        usage = getattr(response, "usage", None)
        input_tokens = getattr(usage, "prompt_tokens", 0) or 0
        output_tokens = getattr(usage, "completion_tokens", 0) or 0

        if not text.strip():
            llm_failures_total.inc(labels={"purpose": purpose})
            raise GenerationError("Text generation returned no content")

        logger.info(
            "llm.generated",
            extra={"purpose": purpose, "model": model, "input_tokens": input_tokens, "output_tokens": output_tokens},
        )
        return Generation(text=text, input_tokens=input_tokens, output_tokens=output_tokens)


_generator: Optional[TextGenerator] = None


def get_text_generator() -> TextGenerator:
    global _generator
    if _generator is None:
        _generator = TextGenerator()
    return _generator


def set_text_generator(generator: Optional[TextGenerator]) -> None:
    """Swap the process-wide generator (tests, alternative providers)."""
    global _generator
    _generator = generator
