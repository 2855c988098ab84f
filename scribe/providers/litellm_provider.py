"""Completion provider backed by LiteLLM."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from loguru import logger

if TYPE_CHECKING:
    from scribe.config.schema import ModelConfig


class LiteLLMCompletionProvider:
    """Single-turn completions through ``litellm.acompletion``."""

    def __init__(
        self,
        *,
        model: str,
        api_key: str | None = None,
        api_base: str | None = None,
        extra_headers: dict[str, str] | None = None,
        max_tokens: int = 200,
        temperature: float = 0.3,
        timeout_seconds: float = 60.0,
    ) -> None:
        self.model = model
        self.api_key = api_key or None
        self.api_base = api_base
        self.extra_headers = extra_headers
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.timeout_seconds = timeout_seconds

    @classmethod
    def from_config(cls, config: "ModelConfig") -> "LiteLLMCompletionProvider":
        return cls(
            model=config.model,
            api_key=config.api_key,
            api_base=config.api_base,
            extra_headers=config.extra_headers,
            max_tokens=config.max_tokens,
            temperature=config.temperature,
            timeout_seconds=config.timeout_seconds,
        )

    async def complete(self, prompt: str) -> str:
        from litellm import acompletion

        kwargs: dict[str, Any] = {
            "model": self.model,
            "messages": [{"role": "user", "content": prompt}],
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
            "timeout": self.timeout_seconds,
        }
        if self.api_key:
            kwargs["api_key"] = self.api_key
        if self.api_base:
            kwargs["api_base"] = self.api_base
        if self.extra_headers:
            kwargs["extra_headers"] = self.extra_headers

        response = await acompletion(**kwargs)
        choices = getattr(response, "choices", None) or []
        if not choices:
            logger.debug("completion returned no choices for model {}", self.model)
            return ""
        message = getattr(choices[0], "message", None)
        content = getattr(message, "content", None)
        return content if isinstance(content, str) else ""
