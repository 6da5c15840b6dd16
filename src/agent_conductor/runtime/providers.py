"""Provider policy table used to build the failover plan.

Adding a provider means adding one ``ProviderSpec`` row; the orchestrator only
ever sees the resulting ordered plan.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

from agent_conductor.config.models import AIConfig, ProviderId


@dataclass(frozen=True)
class ProviderSpec:
    id: ProviderId
    label: str
    is_configured: Callable[[AIConfig], bool]


PROVIDERS: tuple[ProviderSpec, ...] = (
    ProviderSpec(
        id="openai",
        label="OpenAI",
        is_configured=lambda config: bool(config.openai_api_key),
    ),
    ProviderSpec(
        id="anthropic",
        label="Anthropic",
        is_configured=lambda config: bool(config.anthropic_api_key),
    ),
    ProviderSpec(
        id="openai-compatible",
        label="OpenAI-Compatible",
        is_configured=lambda config: bool(
            config.openai_compatible_api_key and config.openai_compatible_base_url
        ),
    ),
    ProviderSpec(
        id="ollama",
        label="Ollama",
        is_configured=lambda config: bool(config.ollama_base_url),
    ),
)


def provider_plan(
    config: AIConfig,
    providers: tuple[ProviderSpec, ...] = PROVIDERS,
) -> list[ProviderSpec]:
    """Preferred provider first, then the table order, configured ones only."""
    by_id = {spec.id: spec for spec in providers}
    ordered = [config.provider, *by_id.keys()]
    plan: list[ProviderSpec] = []
    seen: set[str] = set()
    for provider_id in ordered:
        spec = by_id.get(provider_id)
        if spec is None or provider_id in seen:
            continue
        seen.add(provider_id)
        if spec.is_configured(config):
            plan.append(spec)
    return plan


def provider_label(provider_id: str, providers: tuple[ProviderSpec, ...] = PROVIDERS) -> str:
    for spec in providers:
        if spec.id == provider_id:
            return spec.label
    return provider_id
