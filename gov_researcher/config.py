# =============================================================================
# Application Configuration: Pydantic Settings
# =============================================================================
#
# DESIGN DECISION: We use Pydantic V2's `BaseSettings` for configuration.
# This provides:
# 1. Type-safe configuration with validation at startup
# 2. Automatic loading from environment variables
# 3. Support for .env files (via `env_file` in model_config)
# 4. Sensible defaults for local development
#
# HOW IT WORKS:
# Pydantic Settings loads values in this priority order (highest first):
#   1. Environment variables (e.g., `LLM_MODEL=...`)
#   2. Values from the .env file
#   3. Default values defined below
#
# USAGE:
#   from gov_researcher.config import settings
#   print(settings.max_query_count)
# =============================================================================

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Every knob that bounds cost (oracle calls, downloads, loop rounds)
    lives here so it can be tuned per deployment without code changes.
    """

    # -------------------------------------------------------------------------
    # Application
    # -------------------------------------------------------------------------
    app_name: str = "Gov Data Research Agent"
    app_version: str = "0.1.0"
    debug: bool = True
    log_level: str = "INFO"

    # -------------------------------------------------------------------------
    # API Keys: External Services
    # -------------------------------------------------------------------------
    # ANTHROPIC_API_KEY: For Claude (default oracle)
    # OPENAI_API_KEY: For OpenAI-compatible providers
    # DATAGOV_API_KEY: Optional api.data.gov key, raises CKAN rate limits
    # -------------------------------------------------------------------------
    anthropic_api_key: str = ""
    openai_api_key: str = ""
    datagov_api_key: str = ""

    # -------------------------------------------------------------------------
    # LLM Configuration: Multi-Provider
    # -------------------------------------------------------------------------
    # Two providers are supported:
    #   - "anthropic": Claude via native Anthropic SDK
    #   - "openai_compatible": Any OpenAI-compatible API (OpenAI, DeepSeek,
    #     Qwen, GLM-5, ...). Needs tool-calling support for search/query.
    # -------------------------------------------------------------------------
    llm_provider: str = "anthropic"  # "anthropic" or "openai_compatible"
    llm_base_url: str | None = None  # Only needed for openai_compatible
    llm_api_key: str | None = None   # Overrides provider-specific key if set
    llm_model: str = "claude-sonnet-4-6"
    llm_temperature: float = 0.1
    llm_max_tokens: int = 4096

    # -------------------------------------------------------------------------
    # data.gov Catalog (CKAN action API)
    # -------------------------------------------------------------------------
    datagov_api_url: str = "https://catalog.data.gov/api/3"
    search_rows: int = 10  # Results per package_search call

    # -------------------------------------------------------------------------
    # Tool Adapters
    # -------------------------------------------------------------------------
    # tool_timeout_seconds bounds every external call so a fan-out join
    # always completes: a slow member turns into a failure value.
    # -------------------------------------------------------------------------
    tool_timeout_seconds: float = 10.0
    max_download_bytes: int = 50_000_000
    preview_char_budget: int = 1000   # Deep-evaluation preview size
    view_char_budget: int = 4000      # Page / DOI text size
    resource_cache_max_entries: int = 32

    # -------------------------------------------------------------------------
    # Search & Evaluation
    # -------------------------------------------------------------------------
    # max_search_rounds: the search loop's own ceiling. Without it the loop
    # only stops when the oracle selects a dataset.
    # -------------------------------------------------------------------------
    dataset_relevance_filter: bool = True
    max_search_rounds: int = 8

    # -------------------------------------------------------------------------
    # Querying
    # -------------------------------------------------------------------------
    max_query_count: int = 10     # Hard cap on SQL tool calls per request
    query_row_limit: int = 10     # Default rows returned to the oracle
    query_row_limit_max: int = 100
    query_preview_rows: int = 20
    query_context_enabled: bool = True
    context_max_links: int = 5

    # -------------------------------------------------------------------------
    # Pydantic Settings Configuration
    # -------------------------------------------------------------------------
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


@lru_cache
def get_settings() -> Settings:
    """
    Create and cache a Settings instance.

    In tests, override with FastAPI's dependency_overrides:
        app.dependency_overrides[get_settings] = lambda: Settings(debug=False)
    """
    return Settings()


# ---------------------------------------------------------------------------
# Module-level convenience instance
# ---------------------------------------------------------------------------
settings = Settings()
