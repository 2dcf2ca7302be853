"""Base classes for LLM providers."""

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import TYPE_CHECKING, Literal, NoReturn

if TYPE_CHECKING:
    from magtoepub.utils.logging import BoundLogger


@dataclass
class ResponseFormat:
    """Structured output format.

    Gemini maps ``json_object`` to ``response_mime_type="application/json"``.
    """

    type: Literal["json_object", "text"] = "json_object"


@dataclass
class TokenUsage:
    """Token usage information."""

    prompt_tokens: int
    completion_tokens: int
    reported_total: int | None = None

    @property
    def total_tokens(self) -> int:
        """Total tokens used, as reported by the service when available."""
        if self.reported_total is not None:
            return self.reported_total
        return self.prompt_tokens + self.completion_tokens


@dataclass
class ContentPart:
    """A part of a multimodal request."""

    type: Literal["text", "image"]
    text: str | None = None
    data: bytes | None = None
    mime_type: str | None = None

    @classmethod
    def from_text(cls, text: str) -> "ContentPart":
        return cls(type="text", text=text)

    @classmethod
    def from_image(cls, data: bytes, mime_type: str = "image/jpeg") -> "ContentPart":
        return cls(type="image", data=data, mime_type=mime_type)


@dataclass
class LLMResponse:
    """Response from an LLM."""

    content: str
    usage: TokenUsage | None
    model: str


@dataclass
class StreamChunk:
    """One chunk of a streamed response.

    ``total_tokens`` is the cumulative count for the whole request so far,
    when the service reports it on this chunk.
    """

    text: str | None = None
    total_tokens: int | None = None


class BaseLLMProvider(ABC):
    """Abstract base class for LLM providers."""

    name: str = "base"

    @abstractmethod
    async def complete(
        self,
        parts: list[ContentPart],
        model: str | None = None,
        response_format: ResponseFormat | None = None,
    ) -> LLMResponse:
        """Generate a single response for a multimodal request.

        Args:
            parts: Text and image parts, in order
            model: Optional model override
            response_format: Optional structured output format

        Returns:
            LLM response
        """
        ...

    @abstractmethod
    async def stream(
        self,
        parts: list[ContentPart],
        model: str | None = None,
    ) -> AsyncIterator[StreamChunk]:
        """Start a streamed response.

        Awaiting this opens the stream, so request-level errors (including
        rate limits) are raised here; the returned iterator yields chunks in
        delivery order.

        Args:
            parts: Text and image parts, in order
            model: Optional model override

        Returns:
            Async iterator of chunks
        """
        ...

    def _handle_api_error(
        self,
        error: Exception,
        operation: str,
        log: "BoundLogger",
    ) -> NoReturn:
        """Re-raise a provider error as RateLimitError or LLMError.

        Raises:
            RateLimitError: If the error is rate-limit-class
            LLMError: For all other errors
        """
        from magtoepub.exceptions import LLMError, RateLimitError
        from magtoepub.llm.gateway import is_rate_limit_error

        if is_rate_limit_error(error):
            raise RateLimitError(f"{self.name} {operation} rate limited: {error}") from error
        log.error(f"{self.name} {operation} error", error=str(error))
        raise LLMError(f"{self.name} {operation} error: {error}") from error
