"""Provider credentials and agent behaviour handed to the orchestrator per run."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

ProviderId = Literal["openai", "anthropic", "openai-compatible", "ollama"]
AccessLevel = Literal["safe", "power", "ultimate"]

DEFAULT_TOOL_CATEGORIES = [
    "shell",
    "filesystem",
    "clipboard",
    "applescript",
    "http",
    "app_control",
    "memory",
]
DEFAULT_AUTO_APPROVE_CATEGORIES = ["clipboard", "memory", "http", "app_control"]


class AIConfig(BaseModel):
    """Credentials and endpoints for every provider plus the preferred one."""

    provider: ProviderId = "openai"
    openai_api_key: str = ""
    anthropic_api_key: str = ""
    openai_compatible_api_key: str = ""
    openai_compatible_base_url: str = ""
    openai_compatible_model: str = ""
    ollama_base_url: str = ""
    default_model: str = ""

    def for_provider(self, provider: ProviderId) -> AIConfig:
        """Narrow the config to one provider; the preferred model does not carry over."""
        return self.model_copy(update={"provider": provider, "default_model": ""})


class AgentSettings(BaseModel):
    access_level: AccessLevel = "power"
    system_prompt: str = ""
    enabled_tool_categories: list[str] = Field(
        default_factory=lambda: list(DEFAULT_TOOL_CATEGORIES)
    )
    auto_approve_categories: list[str] = Field(
        default_factory=lambda: list(DEFAULT_AUTO_APPROVE_CATEGORIES)
    )
    max_steps: int = Field(default=30, ge=1)
    auto_recover: bool = True
    recover_delay_s: float = Field(default=1.2, ge=0.0)
    tool_output_limit: int = Field(default=4000, ge=1)
