"""Chat-completions provider for OpenAI-compatible endpoints.

Works with DeepSeek, Ollama, vLLM, LM Studio and any other server that
speaks the /chat/completions dialect.
"""

from __future__ import annotations

import logging

import httpx

from letterintel.errors import MalformedResponseError
from letterintel.llm import register_provider
from letterintel.llm.base import BaseLLMProvider, LLMResponse
from letterintel.retry import retry_async

logger = logging.getLogger(__name__)


def build_payload(
    prompt: str,
    system: str,
    model: str,
    temperature: float,
    max_tokens: int,
    json_mode: bool,
) -> dict:
    messages = [{"role": "system", "content": system}] if system else []
    messages.append({"role": "user", "content": prompt})
    payload = {
        "model": model,
        "messages": messages,
        "temperature": temperature,
        "max_tokens": max_tokens,
    }
    if json_mode:
        payload["response_format"] = {"type": "json_object"}
    return payload


def parse_completion(data: dict, model: str) -> LLMResponse:
    """Pull the first choice and token usage out of a completion body."""
    choices = data.get("choices") or []
    if not choices:
        raise MalformedResponseError(f"Completion from {model} has no choices")
    message = choices[0].get("message") or {}
    if choices[0].get("finish_reason") == "length":
        logger.warning("Completion from %s was cut off at max_tokens", model)

    usage = data.get("usage") or {}
    return LLMResponse(
        text=message.get("content") or "",
        input_tokens=usage.get("prompt_tokens", 0),
        output_tokens=usage.get("completion_tokens", 0),
        model=model,
    )


@register_provider("openai_compatible")
class OpenAICompatibleProvider(BaseLLMProvider):
    """Provider for any OpenAI-compatible API."""

    @property
    def provider_name(self) -> str:
        return "openai_compatible"

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
        payload = build_payload(
            prompt, system, model or self.default_model, temperature, max_tokens, json_mode,
        )
        response = await retry_async(
            self._post, payload,
            max_retries=self.max_retries if max_retries is None else max_retries,
        )
        self._track_cost(response)
        return response

    async def _post(self, payload: dict) -> LLMResponse:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            resp = await client.post(
                f"{self.base_url.rstrip('/')}/chat/completions",
                json=payload,
                headers=headers,
            )
            resp.raise_for_status()
            data = resp.json()

        return parse_completion(data, payload["model"])
