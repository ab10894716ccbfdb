"""
Configuration management using pydantic-settings.
Loads environment variables and provides typed settings.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from typing import Literal


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # LLM Provider Configuration
    llm_provider: Literal["openai", "anthropic"] = Field(
        default="openai",
        description="LLM provider to use"
    )
    llm_model: str = Field(
        default="gpt-4o-mini",
        description="Model name/ID"
    )
    llm_temperature: float = Field(
        default=0.2,
        ge=0.0,
        le=2.0,
        description="LLM temperature (low for deterministic tool calling)"
    )
    llm_max_tokens: int = Field(
        default=2000,
        description="Maximum tokens per model response"
    )

    # API Keys
    openai_api_key: str | None = None
    openai_base_url: str | None = None
    anthropic_api_key: str | None = None

    # Web research (Firecrawl)
    firecrawl_api_key: str | None = None
    firecrawl_base_url: str = Field(
        default="https://api.firecrawl.dev/v1",
        description="Firecrawl API base URL"
    )
    firecrawl_crawl_poll_interval: float = Field(
        default=2.0,
        description="Seconds between crawl status polls"
    )

    # Call initiation
    call_service_url: str = Field(
        default="http://localhost:3000/api/mcp",
        description="JSON-RPC endpoint exposing the start_call tool"
    )

    # Tool execution policy
    tool_timeout_seconds: float = Field(
        default=30.0,
        gt=0.0,
        description="Hard timeout for the full attempt sequence of one tool call"
    )
    tool_max_attempts: int = Field(
        default=3,
        ge=1,
        description="Attempts for read-only, retryable tools"
    )
    tool_backoff_base_seconds: float = Field(
        default=1.0,
        ge=0.0,
        description="Base delay for exponential backoff between attempts"
    )
    tool_backoff_max_seconds: float = Field(
        default=5.0,
        ge=0.0,
        description="Cap on the delay between attempts"
    )
    circuit_breaker_threshold: int = Field(
        default=3,
        ge=1,
        description="Consecutive same-tool failures before the tool is skipped"
    )
    processed_tool_call_retention: int = Field(
        default=20,
        ge=1,
        description="How many executed tool-call ids are remembered"
    )

    # Orchestration
    assistant_name: str = Field(
        default="Dial0",
        description="Product name used in persona prompts"
    )
    prompt_cache_size: int = Field(
        default=100,
        ge=1,
        description="Maximum cached persona prompts"
    )
    model_cache_size: int = Field(
        default=8,
        ge=1,
        description="Maximum cached model clients"
    )
    max_graph_hops: int = Field(
        default=25,
        ge=1,
        description="Node executions allowed per turn"
    )

    # API Configuration
    api_host: str = Field(default="0.0.0.0", description="API host")
    api_port: int = Field(default=8000, description="API port")

    # Observability
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging level"
    )
    log_file: str = Field(
        default="./data/logs/orchestrator.log",
        description="Log file path (empty disables file logging)"
    )

    def validate_api_keys(self) -> None:
        """Validate that required API keys are present based on provider."""
        if self.llm_provider == "openai" and not self.openai_api_key:
            raise ValueError("OPENAI_API_KEY required when LLM_PROVIDER=openai")
        elif self.llm_provider == "anthropic" and not self.anthropic_api_key:
            raise ValueError("ANTHROPIC_API_KEY required when LLM_PROVIDER=anthropic")


# Global settings instance
settings = Settings()
