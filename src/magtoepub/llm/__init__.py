"""LLM integration module for MagToEpub."""

from magtoepub.llm.base import (
    BaseLLMProvider,
    ContentPart,
    LLMResponse,
    ResponseFormat,
    StreamChunk,
    TokenUsage,
)
from magtoepub.llm.gateway import AIGateway, RetryPolicy, is_rate_limit_error
from magtoepub.llm.gemini import GeminiProvider

__all__ = [
    "BaseLLMProvider",
    "ContentPart",
    "LLMResponse",
    "ResponseFormat",
    "StreamChunk",
    "TokenUsage",
    "AIGateway",
    "RetryPolicy",
    "is_rate_limit_error",
    "GeminiProvider",
]
