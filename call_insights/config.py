"""
Application configuration via environment variables.

Uses Pydantic BaseSettings to load and validate all config from env vars
or a .env.local file. Every setting has a sensible default for local
development so the service can start with minimal configuration.
"""

from __future__ import annotations

from enum import Enum
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    """Deployment environment selector."""

    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


class Settings(BaseSettings):
    """
    Central configuration for the Call Insights service.

    Values are loaded from environment variables first, falling back
    to a `.env.local` file in the project root. Secrets should NEVER
    be committed; `.env.example` lists every variable.
    """

    model_config = SettingsConfigDict(
        env_file=".env.local",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── Environment ──────────────────────────────────────────────
    environment: Environment = Environment.DEVELOPMENT

    # ── Completion service (OpenAI-compatible) ───────────────────
    openai_api_key: str = Field(default="", description="API key for the chat completions service")
    openai_base_url: str = Field(default="https://api.openai.com/v1", description="Chat completions base URL")
    completion_model: str = Field(default="gpt-4o", description="Primary model for analytics questions")
    fallback_model: str = Field(default="gpt-4o-mini", description="Smaller model used when the context is too large")
    detail_model: str = Field(default="gpt-4.1", description="Model used for single-call questions")
    completion_max_tokens: int = Field(default=2000, ge=1, description="Max tokens generated per answer")
    completion_temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    completion_timeout_seconds: float = Field(default=60.0, gt=0)

    # ── Retry policy for rate-limited completions ────────────────
    retry_max_attempts: int = Field(default=5, ge=0, le=10, description="Retries after a 429")
    retry_base_delay_ms: int = Field(default=1000, ge=0)
    retry_backoff_multiplier: float = Field(default=2.0, ge=1.0)
    retry_max_delay_ms: int = Field(default=30000, ge=0)

    # ── Context assembly ─────────────────────────────────────────
    context_token_budget: int = Field(default=100_000, ge=1, description="Token budget for the assembled context")
    transcript_examples: int = Field(default=3, ge=0, le=10)
    transcript_excerpt_chars: int = Field(default=400, ge=50)
    top_matching_records: int = Field(default=10, ge=1)

    # ── Query classification ─────────────────────────────────────
    domain_profiles: list[str] = Field(
        default=["mobile_fitting", "tire_size"],
        description="Enabled domain verticals, in priority order",
    )
    max_search_terms: int = Field(default=15, ge=1)

    # ── Supabase record source ───────────────────────────────────
    supabase_url: str = Field(default="", description="Supabase project URL")
    supabase_service_key: str = Field(default="", description="Supabase service-role key")
    call_records_table: str = Field(default="call_records")
    record_page_size: int = Field(default=100, ge=1)
    max_page_size: int = Field(default=1000, ge=1, description="Hard cap on rows per storage request")
    max_records_per_query: int = Field(default=20_000, ge=1, description="Cap on records fetched for one question")

    # ── Query result cache ───────────────────────────────────────
    query_cache_ttl_seconds: float = Field(default=7200.0, ge=0)
    query_cache_max_entries: int = Field(default=100, ge=1)

    # ── Inbound API limits ───────────────────────────────────────
    rate_limit_window_seconds: int = Field(default=60, ge=1)
    rate_limit_max_requests: int = Field(default=100, ge=1)

    # ── Logging ──────────────────────────────────────────────────
    log_level: str = Field(default="INFO", description="Root log level")

    # ── Derived helpers ──────────────────────────────────────────

    @property
    def is_production(self) -> bool:
        return self.environment == Environment.PRODUCTION

    @property
    def is_development(self) -> bool:
        return self.environment == Environment.DEVELOPMENT


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Return cached Settings instance.

    Using lru_cache ensures we read env vars exactly once, and every
    module that calls ``get_settings()`` gets the same object.
    """
    return Settings()
