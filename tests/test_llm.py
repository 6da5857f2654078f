"""Tests for LLM providers, routing and cost tracking."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from letterintel.errors import MalformedResponseError
from letterintel.llm import get_provider_for_task
from letterintel.llm.cost import CostTracker, estimate_cost
from letterintel.llm.openai_compat import OpenAICompatibleProvider, parse_completion


@pytest.fixture
def openai_provider():
    return OpenAICompatibleProvider(
        api_key="test-key",
        base_url="http://localhost:9999",
        default_model="test-model",
    )


def _mock_openai_response(content="test response"):
    return {
        "choices": [{"message": {"content": content}}],
        "usage": {"prompt_tokens": 10, "completion_tokens": 20},
    }


def _mock_client(mock_client_cls, content="test response"):
    mock_resp = MagicMock()
    mock_resp.json.return_value = _mock_openai_response(content)
    mock_resp.raise_for_status = MagicMock()

    mock_client = AsyncMock()
    mock_client.post.return_value = mock_resp
    mock_client.__aenter__ = AsyncMock(return_value=mock_client)
    mock_client.__aexit__ = AsyncMock(return_value=False)
    mock_client_cls.return_value = mock_client
    return mock_client


@pytest.mark.asyncio
@patch("letterintel.llm.openai_compat.httpx.AsyncClient")
async def test_openai_compat_complete(mock_client_cls, openai_provider):
    """OpenAI-compatible provider makes correct API call."""
    mock_client = _mock_client(mock_client_cls, "hello world")

    response = await openai_provider.complete("test prompt", system="sys")

    assert response.text == "hello world"
    assert response.input_tokens == 10
    assert response.output_tokens == 20
    assert response.cost_usd == estimate_cost(10, 20, "test-model")

    call_args = mock_client.post.call_args
    payload = call_args.kwargs.get("json") or call_args[1].get("json")
    assert payload["model"] == "test-model"
    assert len(payload["messages"]) == 2
    assert payload["messages"][0]["role"] == "system"
    assert payload["messages"][1]["content"] == "test prompt"
    assert "response_format" not in payload


@pytest.mark.asyncio
@patch("letterintel.llm.openai_compat.httpx.AsyncClient")
async def test_openai_compat_json_mode(mock_client_cls, openai_provider):
    mock_client = _mock_client(mock_client_cls, '{"facts": []}')

    await openai_provider.complete("prompt", json_mode=True)

    payload = mock_client.post.call_args.kwargs["json"]
    assert payload["response_format"] == {"type": "json_object"}
    assert len(payload["messages"]) == 1


@pytest.mark.asyncio
@patch("letterintel.llm.openai_compat.httpx.AsyncClient")
async def test_openai_compat_per_call_retry_override(mock_client_cls, openai_provider):
    """max_retries=0 surfaces the first transient failure."""
    mock_client = AsyncMock()
    mock_client.post.side_effect = ConnectionError("refused")
    mock_client.__aenter__ = AsyncMock(return_value=mock_client)
    mock_client.__aexit__ = AsyncMock(return_value=False)
    mock_client_cls.return_value = mock_client

    with pytest.raises(ConnectionError):
        await openai_provider.complete("prompt", max_retries=0)
    assert mock_client.post.call_count == 1


@pytest.mark.asyncio
@patch("letterintel.llm.openai_compat.httpx.AsyncClient")
async def test_cost_tracker_is_injected(mock_client_cls):
    _mock_client(mock_client_cls)
    tracker = CostTracker()
    provider = OpenAICompatibleProvider(
        api_key="", base_url="http://localhost:9999",
        default_model="deepseek-chat", cost_tracker=tracker,
    )

    await provider.complete("one")
    await provider.complete("two")

    assert tracker.calls == 2
    assert tracker.total_tokens == 60
    assert tracker.total_cost_usd == pytest.approx(2 * estimate_cost(10, 20, "deepseek-chat"))


def test_get_provider_for_task_builds_fresh_instances(sample_config):
    first = get_provider_for_task(sample_config, "extract")
    second = get_provider_for_task(sample_config, "extract")
    assert isinstance(first, OpenAICompatibleProvider)
    assert first is not second
    assert first.default_model == "test-model"


def test_estimate_cost_unknown_model_uses_default():
    assert estimate_cost(1_000_000, 0, "mystery-model") == 1.25


def test_parse_completion_without_choices_is_malformed():
    with pytest.raises(MalformedResponseError):
        parse_completion({"choices": []}, "test-model")


def test_parse_completion_tolerates_null_content():
    response = parse_completion(
        {"choices": [{"message": {"content": None}, "finish_reason": "length"}]}, "m",
    )
    assert response.text == ""
    assert response.input_tokens == 0
