"""Application settings."""

from functools import lru_cache
import os
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from agent_conductor.config.models import (
    DEFAULT_AUTO_APPROVE_CATEGORIES,
    DEFAULT_TOOL_CATEGORIES,
    AccessLevel,
    AgentSettings,
    AIConfig,
    ProviderId,
)

PROJECT_ROOT = Path(__file__).resolve().parents[3]


class Settings(BaseSettings):
    """Runtime settings loaded from environment variables."""

    app_name: str = "agent-conductor"
    app_env: str = "dev"
    app_debug: bool = False
    database_url: str = ""
    task_retention: int = Field(default=200, ge=1)

    ai_provider: ProviderId = "openai"
    default_model: str = ""
    openai_api_key: str = ""
    anthropic_api_key: str = ""
    openai_compatible_api_key: str = ""
    openai_compatible_base_url: str = ""
    openai_compatible_model: str = ""
    ollama_base_url: str = ""
    llm_timeout_s: float = Field(default=60.0, ge=0.5)
    llm_max_retries: int = Field(default=2, ge=0)
    llm_backoff_s: float = Field(default=2.0, ge=0.0)

    agent_access_level: AccessLevel = "power"
    agent_system_prompt: str = ""
    agent_max_steps: int = Field(default=30, ge=1)
    agent_auto_recover: bool = True
    agent_recover_delay_s: float = Field(default=1.2, ge=0.0)
    agent_enabled_tool_categories: list[str] = Field(
        default_factory=lambda: list(DEFAULT_TOOL_CATEGORIES)
    )
    agent_auto_approve_categories: list[str] = Field(
        default_factory=lambda: list(DEFAULT_AUTO_APPROVE_CATEGORIES)
    )

    tool_timeout_s: float = Field(default=30.0, ge=0.01)
    tool_max_retries: int = Field(default=0, ge=0)
    tool_retry_backoff_s: float = Field(default=0.0, ge=0.0)
    tool_output_limit: int = Field(default=4000, ge=1)

    model_config = SettingsConfigDict(
        env_prefix="AGENT_CONDUCTOR_",
        extra="ignore",
        env_file=(PROJECT_ROOT / ".env", PROJECT_ROOT / ".env.local"),
        env_file_encoding="utf-8",
    )

    def resolved_openai_api_key(self) -> str:
        return self.openai_api_key or os.getenv("OPENAI_API_KEY", "")

    def resolved_anthropic_api_key(self) -> str:
        return self.anthropic_api_key or os.getenv("ANTHROPIC_API_KEY", "")

    def ai_config(self) -> AIConfig:
        return AIConfig(
            provider=self.ai_provider,
            openai_api_key=self.resolved_openai_api_key(),
            anthropic_api_key=self.resolved_anthropic_api_key(),
            openai_compatible_api_key=self.openai_compatible_api_key,
            openai_compatible_base_url=self.openai_compatible_base_url,
            openai_compatible_model=self.openai_compatible_model,
            ollama_base_url=self.ollama_base_url,
            default_model=self.default_model,
        )

    def agent_settings(self) -> AgentSettings:
        return AgentSettings(
            access_level=self.agent_access_level,
            system_prompt=self.agent_system_prompt,
            enabled_tool_categories=list(self.agent_enabled_tool_categories),
            auto_approve_categories=list(self.agent_auto_approve_categories),
            max_steps=self.agent_max_steps,
            auto_recover=self.agent_auto_recover,
            recover_delay_s=self.agent_recover_delay_s,
            tool_output_limit=self.tool_output_limit,
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
