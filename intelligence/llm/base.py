"""
Base LLM
Abstract generative-model adapter.
"""
from abc import ABC, abstractmethod
from typing import List, Optional, Dict, Any
from dataclasses import dataclass, field
from enum import Enum
import inspect
import logging

from core import FinishSignal


logger = logging.getLogger(__name__)

LENGTH_LIMITED_REASONS = {"length", "max_tokens"}


class MessageRole(str, Enum):
    """Message role"""
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


@dataclass
class Message:
    """Chat message"""
    role: MessageRole
    content: str

    def to_dict(self) -> Dict[str, Any]:
        return {"role": self.role.value, "content": self.content}

    @classmethod
    def system(cls, content: str) -> "Message":
        return cls(role=MessageRole.SYSTEM, content=content)

    @classmethod
    def user(cls, content: str) -> "Message":
        return cls(role=MessageRole.USER, content=content)


@dataclass
class LLMResponse:
    """Model response"""
    content: str
    model: str
    usage: Dict[str, int] = field(default_factory=dict)  # prompt_tokens, completion_tokens, total_tokens
    finish_reason: Optional[str] = None
    raw_response: Optional[Any] = None

    @property
    def length_limited(self) -> bool:
        return str(self.finish_reason or "").lower() in LENGTH_LIMITED_REASONS

    @property
    def signal(self) -> FinishSignal:
        return FinishSignal.LENGTH_LIMITED if self.length_limited else FinishSignal.COMPLETE


class BaseLLM(ABC):
    """
    Base class for generative-model providers.

    Subclasses implement ``acomplete``; the pipeline talks to ``agenerate``.
    """

    def __init__(
        self,
        model: str,
        temperature: float = 0.7,
        max_tokens: int = 4096,
        timeout: float = 600.0,
        max_retries: int = 3,
        **kwargs,
    ):
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout = timeout
        self.max_retries = max(1, int(max_retries))
        self.extra_config = kwargs

    @property
    @abstractmethod
    def provider(self) -> str:
        """Provider name"""
        pass

    @abstractmethod
    async def acomplete(
        self,
        messages: List[Message],
        **kwargs,
    ) -> LLMResponse:
        """
        Generate one response.

        Args:
            messages: conversation messages
            **kwargs: temperature, max_tokens overrides

        Returns:
            LLMResponse
        """
        pass

    async def agenerate(
        self,
        prompt: str,
        *,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
        system_prompt: Optional[str] = None,
    ) -> LLMResponse:
        """Single-prompt request with an explicit output ceiling."""
        messages = []
        if system_prompt:
            messages.append(Message.system(system_prompt))
        messages.append(Message.user(prompt))

        kwargs: Dict[str, Any] = {}
        if max_tokens is not None:
            kwargs["max_tokens"] = int(max_tokens)
        if temperature is not None:
            kwargs["temperature"] = float(temperature)
        return await self.acomplete(messages, **kwargs)

    async def aclose(self) -> None:
        """Release the underlying client (no-op by default)."""
        return None

    async def _close_clients(self, *attrs: str) -> None:
        for client_attr in attrs:
            client = getattr(self, client_attr, None)
            if client is None:
                continue
            close_fn = getattr(client, "close", None)
            if callable(close_fn):
                try:
                    maybe_awaitable = close_fn()
                    if inspect.isawaitable(maybe_awaitable):
                        await maybe_awaitable
                except Exception as exc:
                    logger.debug("llm_client_close_failed provider=%s error=%s", self.provider, exc)
            setattr(self, client_attr, None)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(model={self.model}, provider={self.provider})"
