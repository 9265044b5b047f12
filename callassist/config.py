"""
Configuration management using Pydantic Settings.
Loads all environment variables with validation.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    Uses .env file in development, environment variables in production.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Deepgram (speech-to-text)
    deepgram_api_key: str = Field(
        default="",
        description="Deepgram API key for live speech-to-text"
    )
    deepgram_model: str = Field(
        default="nova-3",
        description="Deepgram model for live transcription"
    )
    deepgram_language: str = Field(
        default="en-US",
        description="Language code sent to the recognizer"
    )
    audio_encoding: str = Field(
        default="linear16",
        description="Encoding of the raw audio frames sent by the client"
    )
    audio_sample_rate: int = Field(
        default=8000,
        ge=8000,
        le=48000,
        description="Sample rate in Hz of the client audio frames"
    )
    deepgram_keepalive_interval_s: float = Field(
        default=5.0,
        gt=0.0,
        le=9.0,
        description="Send KeepAlive when no audio has gone out for this long"
    )
    # OpenAI (language model)
    openai_api_key: str = Field(
        default="",
        description="OpenAI API key for summaries, evaluation and suggestions"
    )
    openai_base_url: str = Field(
        default="https://api.openai.com/v1",
        description="Base URL of the OpenAI-compatible API"
    )
    openai_organization_id: Optional[str] = Field(
        default=None,
        description="OpenAI organization ID"
    )
    openai_project_id: Optional[str] = Field(
        default=None,
        description="OpenAI project ID for usage tracking"
    )
    summary_model: str = Field(
        default="gpt-4o-mini",
        description="Model used for rolling summaries and the knowledge-base digest"
    )
    evaluation_model: str = Field(
        default="gpt-4o-mini",
        description="Model used for stage 1 (should a suggestion be shown?)"
    )
    suggestion_model: str = Field(
        default="gpt-4o",
        description="Model used for stage 2 (suggestion card generation)"
    )
    llm_timeout_s: float = Field(
        default=30.0,
        ge=1.0,
        le=120.0,
        description="Total timeout for a single LLM request in seconds"
    )

    # RAG Settings
    corpus_path: str = Field(
        default="vectors.json",
        description="JSON file of pre-embedded chunks: [{chunk, vector}, ...]"
    )
    rag_use_local_embeddings: bool = Field(
        default=True,
        description="Use local sentence-transformers vs OpenAI embeddings API"
    )
    local_embedding_model: str = Field(
        default="all-MiniLM-L6-v2",
        description="sentence-transformers model name (must match the corpus vectors)"
    )
    openai_embedding_model: str = Field(
        default="text-embedding-3-small",
        description="OpenAI embedding model (must match the corpus vectors)"
    )
    rag_top_k: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Number of chunks to retrieve"
    )
    rag_timeout_ms: int = Field(
        default=3000,
        ge=100,
        le=10000,
        description="RAG retrieval timeout in milliseconds"
    )
    overview_query: str = Field(
        default="overview",
        description="Fixed query used to build the per-session knowledge-base digest"
    )

    # Conversation Settings
    initial_summary: str = Field(
        default="The conversation has just started.",
        description="Rolling summary before the first utterance"
    )
    history_window: int = Field(
        default=6,
        ge=1,
        le=50,
        description="Number of recent history entries included in prompts"
    )
    max_history_entries: int = Field(
        default=0,
        ge=0,
        description="Cap on stored history entries per session (0 = unbounded)"
    )

    # Audio pacing
    audio_send_interval_ms: int = Field(
        default=20,
        ge=0,
        le=1000,
        description="Delay after each chunk sent to the recognizer"
    )
    audio_idle_interval_ms: int = Field(
        default=10,
        ge=1,
        le=1000,
        description="Poll delay when the audio buffer is empty"
    )
    recognizer_close_timeout_s: float = Field(
        default=5.0,
        ge=0.0,
        le=60.0,
        description="How long to wait for the recognizer to flush after disconnect"
    )

    # Environment
    environment: str = Field(
        default="development",
        description="Environment: development, staging, or production"
    )
    log_level: str = Field(
        default="INFO",
        description="Logging level: DEBUG, INFO, WARNING, ERROR, CRITICAL"
    )

    # Server Settings
    host: str = Field(
        default="0.0.0.0",
        description="Server host address"
    )
    port: int = Field(
        default=8080,
        ge=1000,
        le=65535,
        description="Server port"
    )

    # CORS
    frontend_url: str = Field(
        default="http://localhost:3000",
        description="Frontend URL for CORS"
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is one of the allowed values."""
        allowed = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in allowed:
            raise ValueError(f"log_level must be one of {allowed}")
        return v_upper

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Validate environment is one of the allowed values."""
        allowed = ["development", "staging", "production"]
        v_lower = v.lower()
        if v_lower not in allowed:
            raise ValueError(f"environment must be one of {allowed}")
        return v_lower

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.environment == "production"


@lru_cache
def get_settings() -> Settings:
    """Return the process-wide settings instance (loaded on first use)."""
    return Settings()
