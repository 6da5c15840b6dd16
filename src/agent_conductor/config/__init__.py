"""Configuration objects."""

from agent_conductor.config.models import AgentSettings, AIConfig
from agent_conductor.config.settings import Settings, get_settings

__all__ = ["AIConfig", "AgentSettings", "Settings", "get_settings"]
