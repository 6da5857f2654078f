"""Abstract base class for LLM providers."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from letterintel.llm.cost import CostTracker

logger = logging.getLogger(__name__)


@dataclass
class LLMResponse:
    """Response from an LLM call."""

    text: str
    input_tokens: int = 0
    output_tokens: int = 0
    model: str = ""
    cost_usd: float = 0.0


class BaseLLMProvider(ABC):
    """Base class for LLM providers."""

    def __init__(
        self,
        api_key: str,
        base_url: str,
        default_model: str,
        max_retries: int = 3,
        timeout: int = 120,
        cost_tracker: CostTracker | None = None,
    ):
        self.api_key = api_key
        self.base_url = base_url
        self.default_model = default_model
        self.max_retries = max_retries
        self.timeout = timeout
        self.cost_tracker = cost_tracker

    @abstractmethod
    async def complete(
        self,
        prompt: str,
        system: str = "",
        model: str | None = None,
        temperature: float = 0.3,
        max_tokens: int = 2000,
        json_mode: bool = False,
        max_retries: int | None = None,
    ) -> LLMResponse:
        """Send a completion request and return the response.

        ``max_retries`` overrides the provider default for this call; pass 0
        where a failure should surface immediately.
        """
        ...

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Human-readable provider name."""
        ...

    def _track_cost(self, response: LLMResponse) -> None:
        """Price the response and report it to the injected tracker, if any."""
        from letterintel.llm.cost import estimate_cost

        response.cost_usd = estimate_cost(
            response.input_tokens, response.output_tokens, response.model,
        )
        if self.cost_tracker and (response.input_tokens or response.output_tokens):
            self.cost_tracker.track(
                response.input_tokens, response.output_tokens, response.model,
            )
