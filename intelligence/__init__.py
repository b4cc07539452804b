"""
Intelligence Module
Generative-model layer used by the generation engines.
"""
from .llm import (
    BaseLLM,
    LLMResponse,
    OpenAILLM,
    AnthropicLLM,
    get_llm,
)

__all__ = [
    "BaseLLM",
    "LLMResponse",
    "OpenAILLM",
    "AnthropicLLM",
    "get_llm",
]
