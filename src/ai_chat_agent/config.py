"""
Configuration management for ai-chat-agent

Uses pydantic-settings for environment variable parsing and validation.
Per-conversation settings live in ConversationConfig, an immutable value
that is replaced wholesale instead of being mutated.
"""

from dataclasses import dataclass, replace
from functools import lru_cache
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigError

DEFAULT_SYSTEM_PROMPT = "You are a generative language model."

SUMMARIZER_SYSTEM_PROMPT = """You are an assistant that compresses the history of a dialogue with a generative language model.
You will receive the dialogue history as JSON in the following format:
{
  "messages": [
    {"role": "system", "content": "System prompt"},
    {"role": "user", "content": "First user message"},
    {"role": "assistant", "content": "Model answer"},
    {"role": "user", "content": "Second user message"},
    {"role": "assistant", "content": "Model answer"},
    ...
  ]
}
Produce a compressed version of the dialogue history that keeps the key information and important details,
so it can be used as the system prompt context for the rest of the dialogue.
The compressed version must be NO LONGER than {max_tokens} tokens!"""

ProviderName = Literal["gigachat", "yandex", "openai", "anthropic"]


@dataclass(frozen=True)
class ConversationConfig:
    """Immutable per-session settings.

    Bounds are inclusive: temperature in [0, 1], max_tokens in [1, 10000],
    auto_summarize_threshold in [0, 20] where 0 disables auto-summarization.
    """

    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    temperature: float = 0.7
    max_tokens: int = 100
    auto_summarize_threshold: int = 0

    def __post_init__(self) -> None:
        if not 0.0 <= self.temperature <= 1.0:
            raise ConfigError(
                f"Temperature must be in range [0.0, 1.0], but was {self.temperature}"
            )
        if not 1 <= self.max_tokens <= 10000:
            raise ConfigError(
                f"MaxTokens must be in range [1, 10000], but was {self.max_tokens}"
            )
        if not 0 <= self.auto_summarize_threshold <= 20:
            raise ConfigError(
                "AutoSummarizeThreshold must be in range [0, 20], "
                f"but was {self.auto_summarize_threshold}"
            )

    def with_changes(self, **changes: Any) -> "ConversationConfig":
        """Return a validated copy with the given fields replaced."""
        return replace(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        return {
            "system_prompt": self.system_prompt,
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
            "auto_summarize_threshold": self.auto_summarize_threshold,
        }


class ToolProviderConfig(BaseModel):
    """Connection settings for one MCP tool provider."""

    url: str
    transport: Literal["sse", "streamable_http"] = "sse"
    timeout: float = 30.0
    enabled: bool = True


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_nested_delimiter="__",
    )

    # Application
    app_name: str = "AI-Chat-Agent"
    debug: bool = False
    log_level: str = "INFO"

    # Providers exposed as chat sessions, in display order
    enabled_providers: list[ProviderName] = Field(default_factory=lambda: ["gigachat", "yandex"])
    default_provider: ProviderName = "gigachat"

    # GigaChat
    gigachat_auth_key: str = Field(default="", description="Base64 client credentials for GigaChat OAuth")
    gigachat_scope: str = "GIGACHAT_API_PERS"
    gigachat_model: str = "GigaChat"
    gigachat_verify_ssl: bool | str = Field(
        default=True,
        description="True/False, or a path to a CA bundle with the Russian trusted root",
    )

    # YandexGPT
    yandex_api_key: str = Field(default="", description="Yandex Cloud API key")
    yandex_folder_id: str = Field(default="", description="Yandex Cloud folder id used in modelUri")
    yandex_model: str = "yandexgpt/latest"

    # OpenAI-compatible and Anthropic providers
    openai_api_key: str = ""
    openai_model: str = "gpt-4o-mini"
    openai_base_url: str | None = None
    anthropic_api_key: str = ""
    anthropic_model: str = "claude-sonnet-4-20250514"

    # HTTP transport
    connect_timeout: float = 60.0
    request_timeout: float = 120.0

    # Tool providers (MCP servers), e.g.
    # MCP_SERVERS='{"weather": {"url": "http://localhost:8081/sse"}}'
    mcp_servers: dict[str, ToolProviderConfig] = Field(default_factory=dict)
    max_tool_rounds: int = Field(default=10, ge=1)

    # Default conversation settings for new sessions
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    temperature: float = 0.7
    max_tokens: int = 100
    auto_summarize_threshold: int = 0

    # Summarizer session
    summarizer_provider: ProviderName = "gigachat"
    summarizer_temperature: float = 0.5
    summarizer_max_tokens: int = 100

    # Database
    database_url: str = Field(
        default="sqlite+aiosqlite:///./data/agent.db",
        description="Database connection URL",
    )

    @field_validator("gigachat_verify_ssl", mode="before")
    @classmethod
    def parse_verify_ssl(cls, v: bool | str) -> bool | str:
        if isinstance(v, str) and v.strip().lower() in ("true", "false", "1", "0", "yes", "no"):
            return v.strip().lower() in ("true", "1", "yes")
        return v

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        return v.strip().upper() if v else "INFO"

    def conversation_defaults(self) -> ConversationConfig:
        """Build the default ConversationConfig for chat sessions."""
        return ConversationConfig(
            system_prompt=self.system_prompt,
            temperature=self.temperature,
            max_tokens=self.max_tokens,
            auto_summarize_threshold=self.auto_summarize_threshold,
        )

    def summarizer_config(self) -> ConversationConfig:
        """Build the ConversationConfig of the dedicated summarizer session."""
        return ConversationConfig(
            system_prompt=SUMMARIZER_SYSTEM_PROMPT.replace(
                "{max_tokens}", str(self.summarizer_max_tokens)
            ),
            temperature=self.summarizer_temperature,
            max_tokens=self.summarizer_max_tokens,
        )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
