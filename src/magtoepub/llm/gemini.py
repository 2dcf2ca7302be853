"""Google Gemini LLM provider implementation."""

import time
from collections.abc import AsyncIterator
from typing import Any

from google import genai
from google.genai import types

from magtoepub.config.constants import DEFAULT_LLM_TIMEOUT, DEFAULT_TEXT_MODEL
from magtoepub.llm.base import (
    BaseLLMProvider,
    ContentPart,
    LLMResponse,
    ResponseFormat,
    StreamChunk,
    TokenUsage,
)
from magtoepub.utils.logging import generate_request_id, get_logger

log = get_logger(__name__)


class GeminiProvider(BaseLLMProvider):
    """Google Gemini API provider using official SDK."""

    name = "gemini"

    def __init__(
        self,
        api_key: str | None = None,
        model: str = DEFAULT_TEXT_MODEL,
        timeout: int = DEFAULT_LLM_TIMEOUT,
    ) -> None:
        """Initialize Gemini provider.

        Args:
            api_key: Google API key
            model: Default model for requests without an override
            timeout: Request timeout in seconds
        """
        self.model = model
        self.client = genai.Client(
            api_key=api_key,
            http_options=types.HttpOptions(
                timeout=timeout * 1000,  # milliseconds
            ),
        )

    async def complete(
        self,
        parts: list[ContentPart],
        model: str | None = None,
        response_format: ResponseFormat | None = None,
    ) -> LLMResponse:
        """Generate a single response using the Gemini API.

        Args:
            parts: Text and image parts
            model: Optional model override
            response_format: Optional structured output format

        Returns:
            LLM response
        """
        request_id = generate_request_id()
        model_name = model or self.model
        start_time = time.perf_counter()

        log.debug(
            "Sending LLM request",
            provider=self.name,
            model=model_name,
            request_id=request_id,
            parts=len(parts),
        )

        try:
            response = await self.client.aio.models.generate_content(
                model=model_name,
                contents=self._convert_parts(parts),  # type: ignore[arg-type]
                config=self._build_generation_config(response_format),
            )
        except Exception as e:
            log.warning(
                "LLM request failed",
                provider=self.name,
                model=model_name,
                request_id=request_id,
                duration_ms=int((time.perf_counter() - start_time) * 1000),
                error=str(e),
                error_type=type(e).__name__,
            )
            self._handle_api_error(e, "API", log)

        usage = self._extract_usage(response)
        log.debug(
            "LLM response received",
            provider=self.name,
            model=model_name,
            request_id=request_id,
            total_tokens=usage.total_tokens if usage else 0,
            duration_ms=int((time.perf_counter() - start_time) * 1000),
        )

        return LLMResponse(
            content=response.text or "",
            usage=usage,
            model=model_name,
        )

    async def stream(
        self,
        parts: list[ContentPart],
        model: str | None = None,
    ) -> AsyncIterator[StreamChunk]:
        """Open a streamed Gemini response.

        Args:
            parts: Text and image parts
            model: Optional model override

        Returns:
            Async iterator of chunks
        """
        request_id = generate_request_id()
        model_name = model or self.model
        log.debug(
            "Opening LLM stream",
            provider=self.name,
            model=model_name,
            request_id=request_id,
            parts=len(parts),
        )

        try:
            response_stream = await self.client.aio.models.generate_content_stream(
                model=model_name,
                contents=self._convert_parts(parts),  # type: ignore[arg-type]
                config=types.GenerateContentConfig(),
            )
        except Exception as e:
            self._handle_api_error(e, "streaming", log)

        return self._iter_chunks(response_stream, request_id)

    async def _iter_chunks(
        self, response_stream: Any, request_id: str
    ) -> AsyncIterator[StreamChunk]:
        chunks = 0
        try:
            async for chunk in response_stream:
                chunks += 1
                total = None
                if getattr(chunk, "usage_metadata", None):
                    total = chunk.usage_metadata.total_token_count
                yield StreamChunk(text=chunk.text, total_tokens=total)
        except Exception as e:
            self._handle_api_error(e, "streaming", log)
        log.debug("LLM stream finished", request_id=request_id, chunks=chunks)

    def _extract_usage(self, response: Any) -> TokenUsage | None:
        metadata = getattr(response, "usage_metadata", None)
        if not metadata:
            return None
        return TokenUsage(
            prompt_tokens=metadata.prompt_token_count or 0,
            completion_tokens=metadata.candidates_token_count or 0,
            reported_total=metadata.total_token_count,
        )

    def _build_generation_config(
        self, response_format: ResponseFormat | None = None
    ) -> types.GenerateContentConfig:
        """Build Gemini generation config with optional JSON mode."""
        if response_format and response_format.type == "json_object":
            return types.GenerateContentConfig(response_mime_type="application/json")
        return types.GenerateContentConfig()

    def _convert_parts(self, parts: list[ContentPart]) -> list[types.Part]:
        """Convert ContentParts to Gemini Parts, preserving order."""
        converted: list[types.Part] = []
        for part in parts:
            if part.type == "text" and part.text is not None:
                converted.append(types.Part.from_text(text=part.text))
            elif part.type == "image" and part.data is not None:
                converted.append(
                    types.Part.from_bytes(data=part.data, mime_type=part.mime_type or "image/jpeg")
                )
        return converted
