"""LLM provider registry and task routing."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from letterintel.llm.base import BaseLLMProvider
    from letterintel.llm.cost import CostTracker

PROVIDERS: dict[str, type[BaseLLMProvider]] = {}


def register_provider(name: str):
    """Decorator to register an LLM provider."""

    def decorator(cls):
        PROVIDERS[name] = cls
        return cls

    return decorator


def get_provider_for_task(
    config: dict, task: str, cost_tracker: CostTracker | None = None
) -> BaseLLMProvider:
    """Build a new provider instance for a given task.

    Instances are not cached; callers own the provider they get and pass it
    to the components that need it.
    """
    from letterintel.config import get_llm_task_config

    task_cfg = get_llm_task_config(config, task)
    provider_type = task_cfg["provider_type"]
    if provider_type not in PROVIDERS:
        raise ValueError(f"Unknown LLM provider type: {provider_type}")

    return PROVIDERS[provider_type](
        api_key=task_cfg["api_key"],
        base_url=task_cfg["base_url"],
        default_model=task_cfg["model"],
        max_retries=task_cfg["max_retries"],
        timeout=task_cfg["timeout"],
        cost_tracker=cost_tracker,
    )


# Import implementations to trigger registration
from letterintel.llm.anthropic_provider import AnthropicProvider  # noqa: E402, F401
from letterintel.llm.openai_compat import OpenAICompatibleProvider  # noqa: E402, F401
