"""Configuration schema using Pydantic."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic_settings import BaseSettings

from scribe.config.defaults import (
    DEFAULT_BACKEND,
    DEFAULT_MODEL,
    DEFAULT_RETRIEVAL,
    DEFAULT_SERVER,
    DEFAULT_STORAGE,
    DEFAULT_SUMMARIZATION,
)


class BackendConfig(BaseModel):
    """Vector backend selection and transport settings."""

    model_config = ConfigDict(extra="ignore")

    name: str = str(DEFAULT_BACKEND["name"])
    base_url: str = str(DEFAULT_BACKEND["base_url"])
    plugin_path: str = str(DEFAULT_BACKEND["plugin_path"])
    vector_path: str = str(DEFAULT_BACKEND["vector_path"])
    vectra_source: str = str(DEFAULT_BACKEND["vectra_source"])
    timeout_seconds: float = Field(default=float(DEFAULT_BACKEND["timeout_seconds"]), gt=0)
    user_handle: str = str(DEFAULT_BACKEND["user_handle"])

    @field_validator("name")
    @classmethod
    def _validate_name(cls, value: str) -> str:
        from scribe.backends import available_backends

        name = value.strip().lower()
        if name not in available_backends():
            raise ValueError(
                f"unknown backend '{value}'; available: {', '.join(available_backends())}"
            )
        return name


class RetryConfig(BaseModel):
    """Backoff policy for summary generation calls."""

    model_config = ConfigDict(extra="ignore")

    max_attempts: int = Field(default=int(DEFAULT_SUMMARIZATION["retry"]["max_attempts"]), ge=1)
    delay_ms: int = Field(default=int(DEFAULT_SUMMARIZATION["retry"]["delay_ms"]), ge=0)
    max_delay_ms: int = Field(default=int(DEFAULT_SUMMARIZATION["retry"]["max_delay_ms"]), ge=0)
    backoff_factor: float = Field(
        default=float(DEFAULT_SUMMARIZATION["retry"]["backoff_factor"]), ge=1.0
    )


class SummarizationConfig(BaseModel):
    """When and how chat turns are summarized."""

    model_config = ConfigDict(extra="ignore")

    enabled: bool = bool(DEFAULT_SUMMARIZATION["enabled"])
    keep_recent_messages: int = Field(
        default=int(DEFAULT_SUMMARIZATION["keep_recent_messages"]), ge=0
    )
    summarize_user_messages: bool = bool(DEFAULT_SUMMARIZATION["summarize_user_messages"])
    batch_size: int = Field(default=int(DEFAULT_SUMMARIZATION["batch_size"]), ge=1)
    batch_delay_ms: int = Field(default=int(DEFAULT_SUMMARIZATION["batch_delay_ms"]), ge=0)
    context_messages: int = Field(default=int(DEFAULT_SUMMARIZATION["context_messages"]), ge=0)
    debounce_ms: int = Field(default=int(DEFAULT_SUMMARIZATION["debounce_ms"]), ge=0)
    rate_limit_calls: int = Field(default=int(DEFAULT_SUMMARIZATION["rate_limit_calls"]), ge=0)
    rate_limit_interval_ms: int = Field(
        default=int(DEFAULT_SUMMARIZATION["rate_limit_interval_ms"]), ge=1
    )
    prompt: str = str(DEFAULT_SUMMARIZATION["prompt"])
    retry: RetryConfig = Field(default_factory=RetryConfig)


class RetrievalConfig(BaseModel):
    """Which summaries get injected and how they are rendered."""

    model_config = ConfigDict(extra="ignore")

    enabled: bool = bool(DEFAULT_RETRIEVAL["enabled"])
    max_retrieved_summaries: int = Field(
        default=int(DEFAULT_RETRIEVAL["max_retrieved_summaries"]), ge=0
    )
    always_include_recent: int = Field(default=int(DEFAULT_RETRIEVAL["always_include_recent"]), ge=0)
    score_threshold: float = Field(default=float(DEFAULT_RETRIEVAL["score_threshold"]), ge=0.0, le=1.0)
    query_messages: int = Field(default=int(DEFAULT_RETRIEVAL["query_messages"]), ge=1)
    memory_template: str = str(DEFAULT_RETRIEVAL["memory_template"])
    separator: str = str(DEFAULT_RETRIEVAL["separator"])
    injection_template: str = str(DEFAULT_RETRIEVAL["injection_template"])
    macro_name: str = str(DEFAULT_RETRIEVAL["macro_name"])
    prune_summarized: bool = bool(DEFAULT_RETRIEVAL["prune_summarized"])

    @model_validator(mode="after")
    def _clamp_recent(self) -> "RetrievalConfig":
        if self.always_include_recent > self.max_retrieved_summaries:
            self.always_include_recent = self.max_retrieved_summaries
        return self


class ModelConfig(BaseModel):
    """Completion model used to write summaries."""

    model_config = ConfigDict(extra="ignore")

    model: str = str(DEFAULT_MODEL["model"])
    api_key: str = str(DEFAULT_MODEL["api_key"])
    api_base: str | None = DEFAULT_MODEL["api_base"]
    extra_headers: dict[str, str] | None = DEFAULT_MODEL["extra_headers"]
    max_tokens: int = Field(default=int(DEFAULT_MODEL["max_tokens"]), ge=1)
    temperature: float = float(DEFAULT_MODEL["temperature"])
    timeout_seconds: float = Field(default=float(DEFAULT_MODEL["timeout_seconds"]), gt=0)


class StorageConfig(BaseModel):
    """Collection naming and cache sizing."""

    model_config = ConfigDict(extra="ignore")

    collection_prefix: str = str(DEFAULT_STORAGE["collection_prefix"])
    hash_cache_size: int = Field(default=int(DEFAULT_STORAGE["hash_cache_size"]), ge=1)


class ServerConfig(BaseModel):
    """Vector plugin server settings."""

    model_config = ConfigDict(extra="ignore")

    host: str = str(DEFAULT_SERVER["host"])
    port: int = int(DEFAULT_SERVER["port"])
    data_dir: str = str(DEFAULT_SERVER["data_dir"])
    embedding_model: str = str(DEFAULT_SERVER["embedding_model"])
    embedding_api_key: str = str(DEFAULT_SERVER["embedding_api_key"])
    embedding_api_base: str | None = DEFAULT_SERVER["embedding_api_base"]


class Config(BaseSettings):
    """Root configuration for scribe."""

    model_config = ConfigDict(
        extra="ignore", populate_by_name=True, env_prefix="SCRIBE_", env_nested_delimiter="__"
    )

    backend: BackendConfig = Field(default_factory=BackendConfig)
    summarization: SummarizationConfig = Field(default_factory=SummarizationConfig)
    retrieval: RetrievalConfig = Field(default_factory=RetrievalConfig)
    model: ModelConfig = Field(default_factory=ModelConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)

    def to_settings(self) -> dict[str, Any]:
        """Dump as a snake_case payload suitable for the settings file."""
        return self.model_dump()
