"""Prompt construction and summary generation for one chat turn."""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

from loguru import logger

from scribe.memory.models import ChatMessage, Turn
from scribe.memory.templating import render_template
from scribe.providers.base import CompletionProvider
from scribe.utils.async_utils import RateLimiter, retry

if TYPE_CHECKING:
    from scribe.config.schema import SummarizationConfig

_LEADING_LABEL = re.compile(r"^\s*(summary|tl;dr)\s*:\s*", re.IGNORECASE)


class SummaryGenerationError(Exception):
    """The completion backend failed or produced an empty summary."""


def speaker_name(message: ChatMessage, *, user_name: str, character_name: str) -> str:
    if message.name:
        return message.name
    return user_name if message.is_user else character_name


def context_window(messages: list[ChatMessage], chat_index: int, size: int) -> list[ChatMessage]:
    """Up to ``size`` non-system messages immediately before ``chat_index``."""
    if size <= 0:
        return []
    preceding = [m for m in messages[:chat_index] if not m.is_system]
    return preceding[-size:]


def clean_summary(text: str) -> str:
    cleaned = _LEADING_LABEL.sub("", (text or "").strip())
    if len(cleaned) >= 2 and cleaned[0] == cleaned[-1] and cleaned[0] in "\"'":
        cleaned = cleaned[1:-1].strip()
    return cleaned


class TurnSummarizer:
    """Writes one summary per turn through a ``CompletionProvider``."""

    def __init__(self, provider: CompletionProvider, config: "SummarizationConfig") -> None:
        self.provider = provider
        self.config = config
        self.limiter: RateLimiter | None = None
        if config.rate_limit_calls > 0:
            self.limiter = RateLimiter(config.rate_limit_calls, config.rate_limit_interval_ms)

    async def _complete(self, prompt: str) -> str:
        if self.limiter is None:
            return await self.provider.complete(prompt)
        return await self.limiter.execute(lambda: self.provider.complete(prompt))

    def build_prompt(
        self,
        turn: Turn,
        messages: list[ChatMessage],
        *,
        user_name: str,
        character_name: str,
    ) -> str:
        window = context_window(messages, turn.chat_index, self.config.context_messages)
        context = "\n".join(
            f"{speaker_name(m, user_name=user_name, character_name=character_name)}: {m.text}"
            for m in window
        )
        return render_template(
            self.config.prompt,
            {
                "message": turn.message.text,
                "name": speaker_name(turn.message, user_name=user_name, character_name=character_name),
                "context": context,
                "turn": turn.turn_number,
                "user": user_name,
                "char": character_name,
            },
        )

    async def summarize(
        self,
        turn: Turn,
        messages: list[ChatMessage],
        *,
        user_name: str,
        character_name: str,
    ) -> str:
        prompt = self.build_prompt(
            turn, messages, user_name=user_name, character_name=character_name
        )
        retry_cfg = self.config.retry

        def _on_retry(attempt: int, exc: Exception) -> None:
            logger.debug("summary for {} attempt {} failed: {}", turn.msg_id, attempt, exc)

        try:
            raw = await retry(
                lambda: self._complete(prompt),
                max_attempts=retry_cfg.max_attempts,
                delay_ms=retry_cfg.delay_ms,
                max_delay_ms=retry_cfg.max_delay_ms,
                backoff_factor=retry_cfg.backoff_factor,
                on_retry=_on_retry,
            )
        except Exception as exc:
            raise SummaryGenerationError(f"generation failed for {turn.msg_id}: {exc}") from exc

        summary = clean_summary(raw)
        if not summary:
            raise SummaryGenerationError(f"empty summary for {turn.msg_id}")
        return summary
