"""
Anthropic LLM
Claude adapter; the default provider for long-form writing.
"""
from typing import List, Optional, Tuple
import logging

from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from utils.exceptions import LLMError
from .base import BaseLLM, Message, MessageRole, LLMResponse


logger = logging.getLogger(__name__)


class AnthropicLLM(BaseLLM):
    """
    Anthropic Claude implementation.

    Requests go through the streaming API and are collected into one message,
    so large ``max_tokens`` values stay within the SDK's non-streaming limits.
    ``stop_reason == "max_tokens"`` surfaces as ``LLMResponse.length_limited``.
    """

    def __init__(
        self,
        model: str = "claude-sonnet-4-5",
        api_key: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: int = 4096,
        timeout: float = 600.0,
        **kwargs,
    ):
        super().__init__(model, temperature, max_tokens, timeout, **kwargs)
        self.api_key = api_key
        self._async_client = None

    @property
    def provider(self) -> str:
        return "anthropic"

    def _get_async_client(self):
        if self._async_client is None:
            from anthropic import AsyncAnthropic
            self._async_client = AsyncAnthropic(
                api_key=self.api_key,
                timeout=self.timeout,
                max_retries=0,
            )
        return self._async_client

    @staticmethod
    def _transient_errors() -> Tuple[type, ...]:
        import anthropic
        return (
            anthropic.APIConnectionError,
            anthropic.RateLimitError,
            anthropic.InternalServerError,
        )

    def _convert_messages(self, messages: List[Message]) -> tuple:
        """Split out the system prompt; Anthropic takes it separately."""
        system_prompt = None
        converted = []

        for msg in messages:
            if msg.role == MessageRole.SYSTEM:
                system_prompt = msg.content
            else:
                converted.append({"role": msg.role.value, "content": msg.content})

        return system_prompt, converted

    async def acomplete(
        self,
        messages: List[Message],
        **kwargs,
    ) -> LLMResponse:
        client = self._get_async_client()
        system_prompt, converted_messages = self._convert_messages(messages)

        request_params = {
            "model": self.model,
            "messages": converted_messages,
            "temperature": kwargs.get("temperature", self.temperature),
            "max_tokens": kwargs.get("max_tokens", self.max_tokens),
        }
        if system_prompt:
            request_params["system"] = system_prompt

        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.max_retries),
                wait=wait_exponential(multiplier=1, min=1, max=10),
                retry=retry_if_exception_type(self._transient_errors()),
                reraise=True,
            ):
                with attempt:
                    async with client.messages.stream(**request_params) as stream:
                        response = await stream.get_final_message()
        except Exception as exc:
            raise LLMError(f"Anthropic request failed: {exc}", provider=self.provider) from exc

        content = "".join(
            block.text for block in response.content if getattr(block, "type", "") == "text"
        )
        input_tokens = int(getattr(response.usage, "input_tokens", 0) or 0)
        output_tokens = int(getattr(response.usage, "output_tokens", 0) or 0)

        if response.stop_reason == "max_tokens":
            logger.info(
                "llm_length_limited provider=anthropic model=%s max_tokens=%s",
                response.model,
                request_params["max_tokens"],
            )

        return LLMResponse(
            content=content,
            model=response.model,
            usage={
                "prompt_tokens": input_tokens,
                "completion_tokens": output_tokens,
                "total_tokens": input_tokens + output_tokens,
            },
            finish_reason=response.stop_reason,
            raw_response=response,
        )

    async def aclose(self) -> None:
        await self._close_clients("_async_client")
