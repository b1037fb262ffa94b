"""
Central configuration loaded from environment variables.
All settings have sensible defaults so the service works out of the box;
only a provider API key is needed for real embeddings and cluster names.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # ------------------------------------------------------------------ #
    # Service identity
    # ------------------------------------------------------------------ #
    app_name: str = "project-clustering-api"
    app_version: str = "1.0.0"
    environment: Literal["development", "staging", "production"] = "development"
    debug: bool = False

    # ------------------------------------------------------------------ #
    # API authentication
    # Set API_KEY to a non-empty string to enable authentication.
    # Leave blank (default) to run in open / unauthenticated mode.
    # ------------------------------------------------------------------ #
    api_key: str = ""

    # ------------------------------------------------------------------ #
    # Rate limiting  (slowapi)
    # ------------------------------------------------------------------ #
    rate_limit_enabled: bool = True
    rate_limit_per_minute: int = 30        # clustering runs per client IP per minute

    # ------------------------------------------------------------------ #
    # Providers (via LiteLLM)
    # Set the API key for the provider behind each model string:
    #   Gemini    → GEMINI_API_KEY
    #   OpenAI    → OPENAI_API_KEY
    #   Anthropic → ANTHROPIC_API_KEY  (naming only, no embeddings)
    # ------------------------------------------------------------------ #
    embedding_model: str = "gemini/text-embedding-004"
    naming_model: str = "gemini/gemini-2.5-flash"
    naming_max_tokens: int = 30
    naming_temperature: float = 0.7
    provider_timeout_seconds: float = 30.0
    gemini_api_key: str = ""
    openai_api_key: str = ""
    anthropic_api_key: str = ""

    # ------------------------------------------------------------------ #
    # Clustering
    # ------------------------------------------------------------------ #
    max_clusters: int = Field(default=3, ge=1)
    kmeans_max_iterations: int = Field(default=50, ge=1)
    naming_sample_size: int = Field(default=5, ge=1)
    concurrent_naming: bool = True
    cluster_seed: int | None = None        # None → seeded from OS entropy
    max_projects: int = 500

    # ------------------------------------------------------------------ #
    # Logging
    # ------------------------------------------------------------------ #
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_json: bool = True

    # ------------------------------------------------------------------ #
    # Derived helpers
    # ------------------------------------------------------------------ #
    @field_validator(
        "api_key", "gemini_api_key", "openai_api_key", "anthropic_api_key",
        mode="before",
    )
    @classmethod
    def strip_whitespace(cls, v: str) -> str:
        return v.strip() if v else ""

    @property
    def auth_enabled(self) -> bool:
        return bool(self.api_key)

    def provider_api_key(self, model: str) -> str | None:
        """
        Pick the configured key for a LiteLLM model string by its prefix.
        Returns None when no key is set so LiteLLM falls back to its own
        environment lookup.
        """
        provider = model.split("/", 1)[0].lower() if "/" in model else ""
        key = {
            "gemini": self.gemini_api_key,
            "openai": self.openai_api_key,
            "anthropic": self.anthropic_api_key,
        }.get(provider, "")
        return key or None


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Return a cached Settings singleton.
    The cache is reset between tests via `get_settings.cache_clear()`.
    """
    return Settings()
