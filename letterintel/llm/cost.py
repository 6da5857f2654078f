"""Token pricing and per-run cost accounting."""

from __future__ import annotations

# USD per 1M tokens (input, output)
PRICING = {
    "deepseek-chat": (0.14, 0.28),
    "gemini-2.5-pro": (1.25, 5.00),
    "claude-sonnet-4-5-20250514": (3.0, 15.0),
    "claude-haiku-4-5-20251001": (0.80, 4.0),
}
DEFAULT_PRICING = (1.25, 5.00)


def estimate_cost(input_tokens: int, output_tokens: int, model: str) -> float:
    """Rough cost estimate based on known pricing (per 1M tokens)."""
    input_rate, output_rate = PRICING.get(model, DEFAULT_PRICING)
    return (input_tokens * input_rate + output_tokens * output_rate) / 1_000_000


class CostTracker:
    """Accumulate LLM token usage and cost across a run or request."""

    def __init__(self):
        self.total_input_tokens = 0
        self.total_output_tokens = 0
        self.total_cost_usd = 0.0
        self.calls = 0

    def track(self, input_tokens: int, output_tokens: int, model: str) -> None:
        self.calls += 1
        self.total_input_tokens += input_tokens
        self.total_output_tokens += output_tokens
        self.total_cost_usd += estimate_cost(input_tokens, output_tokens, model)

    @property
    def total_tokens(self) -> int:
        return self.total_input_tokens + self.total_output_tokens
