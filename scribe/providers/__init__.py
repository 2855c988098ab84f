"""Completion providers used to write summaries."""

from scribe.providers.base import CompletionProvider
from scribe.providers.litellm_provider import LiteLLMCompletionProvider

__all__ = ["CompletionProvider", "LiteLLMCompletionProvider"]
