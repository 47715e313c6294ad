"""
Configuration management using pydantic-settings.

Loads configuration from environment variables and .env files.
No credential is required: a missing key degrades the matching
capability to "unavailable" instead of failing validation.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Capabilities (all optional):
        OPENAI_API_KEY: Enables structured generation
        SEARCH_API_KEY: Enables web search (Tavily-compatible endpoint)
        WAREHOUSE_PATH: SQLite file used as the analytical warehouse

    Limits:
        MAX_WEB_QUERIES_PER_SECTION: Deduplicated web queries per section
        MAX_WAREHOUSE_PROBES: Warehouse probes issued per run
        MAX_STAGE_EXECUTIONS: Hard bound on stage executions per run
        QUALITY_THRESHOLD / MAX_REVISIONS: Reviewer revision edge
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Structured generation
    OPENAI_API_KEY: str | None = Field(default=None, description="OpenAI API key")
    OPENAI_BASE_URL: str | None = Field(
        default=None, description="Override for OpenAI-compatible endpoints"
    )
    MODEL_WORKHORSE: str = Field(
        default="gpt-4o-mini",
        description="Model used for structured generation",
    )
    GENERATION_TIMEOUT_SECONDS: float = Field(
        default=60.0, gt=0.0, description="Timeout for one generation call"
    )

    # Web search
    SEARCH_API_KEY: str | None = Field(default=None, description="Web search API key")
    SEARCH_API_URL: str = Field(
        default="https://api.tavily.com/search",
        description="Web search endpoint",
    )
    SEARCH_RESULTS_PER_QUERY: int = Field(
        default=5, ge=1, le=20, description="Results requested per web query"
    )

    # Warehouse
    WAREHOUSE_PATH: Path | None = Field(
        default=None, description="SQLite database used for warehouse probes"
    )

    # Evidence gathering limits
    MAX_WEB_QUERIES_PER_SECTION: int = Field(
        default=2, ge=0, le=10, description="Deduplicated web queries per section"
    )
    MAX_CONCURRENT_SEARCHES: int = Field(
        default=4, ge=1, le=32, description="Concurrent web search calls"
    )
    MAX_CONCURRENT_GENERATIONS: int = Field(
        default=4, ge=1, le=32, description="Concurrent structured generation calls"
    )
    MAX_WAREHOUSE_PROBES: int = Field(
        default=3, ge=0, le=25, description="Warehouse probes issued per run"
    )
    MAX_CONCURRENT_PROBES: int = Field(
        default=2, ge=1, le=8, description="Concurrent warehouse probes"
    )
    WAREHOUSE_ROW_LIMIT: int = Field(
        default=25, ge=1, le=1000, description="Row cap for a warehouse probe"
    )
    DEDUP_INCLUDE_LOCALE: bool = Field(
        default=False,
        description="Include the profile locale in the web query dedup signature",
    )

    # Orchestration
    MAX_STAGE_EXECUTIONS: int = Field(
        default=50, ge=1, le=500, description="Stage executions allowed per run"
    )
    QUALITY_THRESHOLD: float = Field(
        default=0.8, ge=0.0, le=1.0, description="Reviewer score that ends the run"
    )
    MAX_REVISIONS: int = Field(
        default=0, ge=0, le=5, description="Revision passes back to data_analyzer"
    )
    RUN_TIMEOUT_SECONDS: float | None = Field(
        default=None, gt=0.0, description="Wall-clock limit for a run"
    )

    # Catalog and directories
    SOURCE_CATALOG_PATH: Path | None = Field(
        default=None, description="YAML data source catalog (bundled catalog if unset)"
    )
    OUTPUT_DIR: Path = Field(default=Path("output"), description="Output directory")

    # Logging
    LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Logging level"
    )

    @property
    def openai_api_key(self) -> str | None:
        """Get OpenAI API key (lowercase alias)."""
        return self.OPENAI_API_KEY or None

    @property
    def search_api_key(self) -> str | None:
        """Get search API key (lowercase alias)."""
        return self.SEARCH_API_KEY or None

    @field_validator("OPENAI_API_KEY", "SEARCH_API_KEY", "OPENAI_BASE_URL", mode="before")
    @classmethod
    def blank_to_none(cls, v: str | None) -> str | None:
        """Treat empty strings as unset."""
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator("WAREHOUSE_PATH", "SOURCE_CATALOG_PATH", mode="before")
    @classmethod
    def blank_path_to_none(cls, v: str | Path | None) -> str | Path | None:
        """Treat empty path strings as unset."""
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @model_validator(mode="after")
    def validate_probe_concurrency(self) -> Settings:
        """Concurrent probes can never exceed the per-run probe budget."""
        if self.MAX_WAREHOUSE_PROBES and self.MAX_CONCURRENT_PROBES > self.MAX_WAREHOUSE_PROBES:
            self.MAX_CONCURRENT_PROBES = self.MAX_WAREHOUSE_PROBES
        return self

    @property
    def available_capabilities(self) -> list[str]:
        """Return list of configured external capabilities."""
        capabilities: list[str] = []
        if self.openai_api_key:
            capabilities.append("generation")
        if self.search_api_key:
            capabilities.append("web_search")
        if self.WAREHOUSE_PATH:
            capabilities.append("warehouse")
        return capabilities

    def get_run_output_dir(self, run_id: str) -> Path:
        """Get the output directory for a specific run."""
        run_dir = self.OUTPUT_DIR / run_id
        run_dir.mkdir(parents=True, exist_ok=True)
        return run_dir

    def redacted_display(self) -> dict[str, str | int | float | bool | None]:
        """Return settings with API keys redacted for display."""
        def redact(value: str | None) -> str | None:
            if value is None:
                return None
            return f"{value[:8]}...{value[-4:]}" if len(value) > 12 else "***"

        return {
            "OPENAI_API_KEY": redact(self.OPENAI_API_KEY),
            "OPENAI_BASE_URL": self.OPENAI_BASE_URL,
            "MODEL_WORKHORSE": self.MODEL_WORKHORSE,
            "SEARCH_API_KEY": redact(self.SEARCH_API_KEY),
            "SEARCH_API_URL": self.SEARCH_API_URL,
            "WAREHOUSE_PATH": str(self.WAREHOUSE_PATH) if self.WAREHOUSE_PATH else None,
            "MAX_WEB_QUERIES_PER_SECTION": self.MAX_WEB_QUERIES_PER_SECTION,
            "MAX_CONCURRENT_SEARCHES": self.MAX_CONCURRENT_SEARCHES,
            "MAX_CONCURRENT_GENERATIONS": self.MAX_CONCURRENT_GENERATIONS,
            "MAX_WAREHOUSE_PROBES": self.MAX_WAREHOUSE_PROBES,
            "MAX_CONCURRENT_PROBES": self.MAX_CONCURRENT_PROBES,
            "WAREHOUSE_ROW_LIMIT": self.WAREHOUSE_ROW_LIMIT,
            "DEDUP_INCLUDE_LOCALE": self.DEDUP_INCLUDE_LOCALE,
            "MAX_STAGE_EXECUTIONS": self.MAX_STAGE_EXECUTIONS,
            "QUALITY_THRESHOLD": self.QUALITY_THRESHOLD,
            "MAX_REVISIONS": self.MAX_REVISIONS,
            "RUN_TIMEOUT_SECONDS": self.RUN_TIMEOUT_SECONDS,
            "SOURCE_CATALOG_PATH": (
                str(self.SOURCE_CATALOG_PATH) if self.SOURCE_CATALOG_PATH else None
            ),
            "OUTPUT_DIR": str(self.OUTPUT_DIR),
            "LOG_LEVEL": self.LOG_LEVEL,
        }


@lru_cache
def get_settings() -> Settings:
    """Get cached settings singleton.

    Returns:
        Settings instance loaded from environment.

    Raises:
        ValidationError: If settings are invalid.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache (useful for testing)."""
    get_settings.cache_clear()
