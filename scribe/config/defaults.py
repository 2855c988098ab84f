"""Centralized defaults for generated/migrated settings files."""

from __future__ import annotations

from copy import deepcopy
from typing import Any

SETTINGS_KEY = "scribe"
LEGACY_SETTINGS_KEY = "contextSummarizer"
MEMORIES_KEY = "memories"

DEFAULT_SUMMARY_PROMPT = (
    "Summarize the following chat message in one or two sentences. "
    "Keep names, decisions, facts and emotional beats; drop filler.\n"
    "{{#if context}}Previous messages for context:\n{{context}}\n\n{{/if}}"
    "Message from {{name}}:\n{{message}}\n\nSummary:"
)

DEFAULT_BACKEND: dict[str, Any] = {
    "name": "lancedb",
    "base_url": "http://127.0.0.1:8000",
    "plugin_path": "/api/plugins/scribe",
    "vector_path": "/api/vector",
    "vectra_source": "transformers",
    "timeout_seconds": 30.0,
    "user_handle": "default-user",
}

DEFAULT_SUMMARIZATION: dict[str, Any] = {
    "enabled": True,
    "keep_recent_messages": 10,
    "summarize_user_messages": True,
    "batch_size": 5,
    "batch_delay_ms": 500,
    "context_messages": 3,
    "debounce_ms": 1500,
    "rate_limit_calls": 0,
    "rate_limit_interval_ms": 60000,
    "prompt": DEFAULT_SUMMARY_PROMPT,
    "retry": {
        "max_attempts": 3,
        "delay_ms": 1000,
        "max_delay_ms": 10000,
        "backoff_factor": 2.0,
    },
}

DEFAULT_RETRIEVAL: dict[str, Any] = {
    "enabled": True,
    "max_retrieved_summaries": 5,
    "always_include_recent": 3,
    "score_threshold": 0.3,
    "query_messages": 3,
    "memory_template": "[Turn {{turn}}] {{summary}}",
    "separator": "\n",
    "injection_template": "[Memories of earlier conversation]\n{{memories}}",
    "macro_name": "scribe_memory",
    "prune_summarized": True,
}

DEFAULT_MODEL: dict[str, Any] = {
    "model": "openai/gpt-4o-mini",
    "api_key": "",
    "api_base": None,
    "extra_headers": None,
    "max_tokens": 200,
    "temperature": 0.3,
    "timeout_seconds": 60.0,
}

DEFAULT_STORAGE: dict[str, Any] = {
    "collection_prefix": "scribe_",
    "hash_cache_size": 10000,
}

DEFAULT_SERVER: dict[str, Any] = {
    "host": "127.0.0.1",
    "port": 8765,
    "data_dir": "",
    "embedding_model": "openai/text-embedding-3-small",
    "embedding_api_key": "",
    "embedding_api_base": None,
}


def default_settings() -> dict[str, Any]:
    """Return a fresh snake_case settings payload with every section filled."""
    return {
        "backend": deepcopy(DEFAULT_BACKEND),
        "summarization": deepcopy(DEFAULT_SUMMARIZATION),
        "retrieval": deepcopy(DEFAULT_RETRIEVAL),
        "model": deepcopy(DEFAULT_MODEL),
        "storage": deepcopy(DEFAULT_STORAGE),
        "server": deepcopy(DEFAULT_SERVER),
    }


def apply_missing_defaults(payload: dict[str, Any]) -> dict[str, Any]:
    """Fill missing keys in a snake_case settings payload, in place."""
    _merge_missing(payload, default_settings())
    return payload


def _merge_missing(target: dict[str, Any], defaults: dict[str, Any]) -> None:
    for key, value in defaults.items():
        if key not in target:
            target[key] = deepcopy(value)
        elif isinstance(value, dict) and isinstance(target[key], dict):
            _merge_missing(target[key], value)
