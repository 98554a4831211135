"""OpenAI-compatible LLM client.

This wraps the `openai` Python SDK and provides a minimal interface for chat completions with a
single bounded timeout per call.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Literal, Protocol, Sequence

import openai
from openai import OpenAI

from trusteye.config import GeneratorConfig
from trusteye.errors import UpstreamError, require_settings
from trusteye.logging import get_logger

logger = get_logger(__name__)

Role = Literal["system", "user", "assistant"]


@dataclass(frozen=True)
class ChatMessage:
    """A chat message."""

    role: Role
    content: str


class ChatModel(Protocol):
    """Anything that turns chat messages into assistant text."""

    def complete(self, messages: Sequence[ChatMessage], *, temperature: float = 0.2) -> str:
        """Generate a completion."""


class LLMClient:
    """LLM client using OpenAI-compatible Chat Completions API."""

    def __init__(self, config: GeneratorConfig) -> None:
        require_settings({"TRUSTEYE_OPENAI_API_KEY": config.api_key})
        self._config = config
        # No SDK-level retries: a slow provider must degrade to the fallback draft quickly.
        self._client = OpenAI(
            api_key=config.api_key,
            base_url=config.base_url,
            timeout=config.timeout_s,
            max_retries=0,
        )

    @property
    def provider(self) -> str:
        return self._config.provider

    def complete(self, messages: Sequence[ChatMessage], *, temperature: float = 0.2) -> str:
        """Generate a completion.

        Args:
            messages: Chat messages.
            temperature: Sampling temperature.

        Returns:
            Assistant message content.

        Raises:
            UpstreamError: The provider failed or timed out.
        """

        payload: list[dict[str, str]] = [{"role": m.role, "content": m.content} for m in messages]
        started = time.monotonic()
        try:
            resp = self._client.chat.completions.create(
                model=self._config.model,
                messages=payload,
                temperature=temperature,
                timeout=self._config.timeout_s,
            )
        except openai.APITimeoutError as e:
            raise UpstreamError(
                f"LLM call timed out after {self._config.timeout_s}s", service=self.provider
            ) from e
        except openai.APIStatusError as e:
            raise UpstreamError(
                f"LLM call failed: {e.message}", service=self.provider, status_code=e.status_code
            ) from e
        except openai.APIError as e:
            raise UpstreamError(f"LLM call failed: {e}", service=self.provider) from e

        logger.info(
            "LLM completion ok",
            extra={
                "provider": self.provider,
                "model": self._config.model,
                "latency_ms": int((time.monotonic() - started) * 1000),
            },
        )
        choice = resp.choices[0]
        if not choice.message or choice.message.content is None:
            return ""
        return choice.message.content
