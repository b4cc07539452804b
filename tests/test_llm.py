from __future__ import annotations

from types import SimpleNamespace

import pytest

from core import FinishSignal
from intelligence.llm import AnthropicLLM, LLMResponse, get_llm
from utils.exceptions import ConfigurationError, LLMError


class _Stream:
    def __init__(self, message=None, error=None):
        self.message = message
        self.error = error

    async def __aenter__(self):
        if self.error is not None:
            raise self.error
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    async def get_final_message(self):
        return self.message


class _Messages:
    def __init__(self, stream: _Stream):
        self._stream = stream
        self.requests = []

    def stream(self, **params):
        self.requests.append(params)
        return self._stream


def _anthropic_with(stream: _Stream) -> AnthropicLLM:
    llm = AnthropicLLM(api_key="test", max_retries=1)
    llm._async_client = SimpleNamespace(messages=_Messages(stream))
    return llm


@pytest.mark.parametrize(
    "reason, signal",
    [
        ("stop", FinishSignal.COMPLETE),
        ("end_turn", FinishSignal.COMPLETE),
        (None, FinishSignal.COMPLETE),
        ("length", FinishSignal.LENGTH_LIMITED),
        ("max_tokens", FinishSignal.LENGTH_LIMITED),
    ],
)
def test_finish_reason_maps_to_signal(reason, signal) -> None:
    response = LLMResponse(content="x", model="m", finish_reason=reason)
    assert response.signal is signal
    assert response.length_limited is (signal is FinishSignal.LENGTH_LIMITED)


@pytest.mark.asyncio
async def test_anthropic_adapter_passes_ceiling_and_reports_truncation() -> None:
    message = SimpleNamespace(
        content=[SimpleNamespace(type="text", text="<p>Partial"), SimpleNamespace(type="thinking", text="hidden")],
        usage=SimpleNamespace(input_tokens=12, output_tokens=30),
        stop_reason="max_tokens",
        model="claude-test",
    )
    llm = _anthropic_with(_Stream(message=message))

    response = await llm.agenerate("TASK: write", max_tokens=1234, temperature=0.2, system_prompt="Be brief.")

    request = llm._async_client.messages.requests[0]
    assert request["max_tokens"] == 1234
    assert request["temperature"] == 0.2
    assert request["system"] == "Be brief."
    assert request["messages"] == [{"role": "user", "content": "TASK: write"}]
    assert response.content == "<p>Partial"
    assert response.signal is FinishSignal.LENGTH_LIMITED
    assert response.usage["total_tokens"] == 42


@pytest.mark.asyncio
async def test_anthropic_adapter_wraps_errors() -> None:
    llm = _anthropic_with(_Stream(error=ValueError("bad request")))

    with pytest.raises(LLMError) as exc_info:
        await llm.agenerate("TASK: write")

    assert exc_info.value.provider == "anthropic"


def test_factory_rejects_unknown_provider() -> None:
    with pytest.raises(ConfigurationError):
        get_llm(provider="mystery")


def test_factory_builds_requested_provider() -> None:
    llm = get_llm(provider="openai", model="gpt-test", api_key="k")
    assert llm.provider == "openai"
    assert llm.model == "gpt-test"
