"""Anthropic Claude LLM provider."""

from __future__ import annotations

import logging

import anthropic

from letterintel.errors import MalformedResponseError
from letterintel.llm import register_provider
from letterintel.llm.base import BaseLLMProvider, LLMResponse
from letterintel.retry import retry_async

logger = logging.getLogger(__name__)

# The Messages API has no JSON switch, so JSON mode is a system instruction
JSON_ONLY_SUFFIX = "\n\nRespond with JSON only, no prose and no markdown fences."


@register_provider("anthropic")
class AnthropicProvider(BaseLLMProvider):
    """Provider for Anthropic Claude models."""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self._client: anthropic.AsyncAnthropic | None = None

    @property
    def provider_name(self) -> str:
        return "anthropic"

    @property
    def client(self) -> anthropic.AsyncAnthropic:
        # SDK retries are off; retry_async owns the retry policy
        if self._client is None:
            self._client = anthropic.AsyncAnthropic(
                api_key=self.api_key, timeout=self.timeout, max_retries=0,
            )
        return self._client

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
        request = {
            "model": model or self.default_model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "messages": [{"role": "user", "content": prompt}],
        }
        if json_mode:
            system = (system + JSON_ONLY_SUFFIX).strip()
        if system:
            request["system"] = system

        response = await retry_async(
            self._create, request,
            max_retries=self.max_retries if max_retries is None else max_retries,
        )
        self._track_cost(response)
        return response

    async def _create(self, request: dict) -> LLMResponse:
        message = await self.client.messages.create(**request)
        text = "".join(
            block.text for block in message.content if getattr(block, "type", "") == "text"
        )
        if not text and message.stop_reason not in ("end_turn", "stop_sequence"):
            raise MalformedResponseError(
                f"Empty response from {request['model']} (stop_reason={message.stop_reason})"
            )
        return LLMResponse(
            text=text,
            input_tokens=message.usage.input_tokens,
            output_tokens=message.usage.output_tokens,
            model=request["model"],
        )
