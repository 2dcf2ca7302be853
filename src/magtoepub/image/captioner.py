"""AI captioning of extracted images."""

import json
from collections.abc import Awaitable, Callable, Sequence
from functools import partial
from typing import Any

import anyio

from magtoepub.config.constants import CAPTION_BATCH_DELAY, CAPTION_BATCH_SIZE
from magtoepub.core.state import ProgressChannel, ProgressEvent, Stage, StageResult, percent
from magtoepub.image.models import ExtractedImage
from magtoepub.llm.base import BaseLLMProvider, ContentPart, ResponseFormat
from magtoepub.llm.gateway import AIGateway
from magtoepub.llm.prompts import build_caption_prompt
from magtoepub.utils.logging import get_logger

log = get_logger(__name__)


def parse_captions(content: str) -> dict[str, str]:
    """Parse a ``[{"name": ..., "description": ...}]`` response.

    Anything that is not a JSON array of such objects yields no captions.
    """
    try:
        payload: Any = json.loads(content)
    except (json.JSONDecodeError, TypeError) as e:
        log.warning("Caption response is not valid JSON", error=str(e))
        return {}

    if not isinstance(payload, list):
        log.warning("Caption response is not a JSON array", type=type(payload).__name__)
        return {}

    captions: dict[str, str] = {}
    for item in payload:
        if not isinstance(item, dict):
            continue
        name = item.get("name")
        description = item.get("description")
        if isinstance(name, str) and isinstance(description, str):
            captions[name] = description
    return captions


class ImageCaptioner:
    """Ask a vision model for short alt-text descriptions, a batch at a time.

    The cover is never sent; it keeps its fixed description. A failed batch
    is logged and skipped so its images stay undescribed.
    """

    def __init__(
        self,
        provider: BaseLLMProvider,
        gateway: AIGateway | None = None,
        model: str | None = None,
        batch_size: int = CAPTION_BATCH_SIZE,
        batch_delay: float = CAPTION_BATCH_DELAY,
        sleep: Callable[[float], Awaitable[None]] = anyio.sleep,
    ) -> None:
        self.provider = provider
        self.gateway = gateway or AIGateway(sleep=sleep)
        self.model = model
        self.batch_size = batch_size
        self.batch_delay = batch_delay
        self._sleep = sleep

    async def caption(
        self,
        images: Sequence[ExtractedImage],
        progress: ProgressChannel | None = None,
    ) -> StageResult[list[ExtractedImage]]:
        """Fill in ``description`` on every image the model recognizes.

        Args:
            images: Extracted images; descriptions are set in place
            progress: Channel receiving per-batch progress and usage events

        Returns:
            The same images, with the run's caption token usage attached
        """
        progress = progress or ProgressChannel()
        targets = [image for image in images if not image.is_cover]
        result: StageResult[list[ExtractedImage]] = StageResult(list(images))
        if not targets:
            return result

        batches = [
            targets[start : start + self.batch_size]
            for start in range(0, len(targets), self.batch_size)
        ]
        known = {image.name: image for image in targets}
        processed = 0
        described = 0

        for number, batch in enumerate(batches, start=1):
            if number > 1:
                await self._sleep(self.batch_delay)

            try:
                described += await self._caption_batch(batch, known, result, progress)
            except Exception as e:
                log.warning(
                    "Failed to generate captions for batch",
                    batch=number,
                    images=[image.name for image in batch],
                    error=str(e),
                )
                result.errors.append(f"batch {number}: {e}")

            processed += len(batch)
            progress.emit(
                ProgressEvent(
                    kind="progress",
                    stage=Stage.ANALYZING_IMAGES,
                    progress=percent(processed, len(targets)),
                    message=f"Labeled {processed} of {len(targets)} images...",
                )
            )

        if result.errors:
            result.status = "partial" if len(result.errors) < len(batches) else "failed"

        log.info(
            "Captioned images",
            described=described,
            total=len(targets),
            failed_batches=len(result.errors),
            tokens=result.token_usage,
        )
        return result

    async def _caption_batch(
        self,
        batch: list[ExtractedImage],
        known: dict[str, ExtractedImage],
        result: StageResult[list[ExtractedImage]],
        progress: ProgressChannel,
    ) -> int:
        parts = [ContentPart.from_text(build_caption_prompt(len(batch)))]
        for image in batch:
            parts.append(ContentPart.from_image(image.data, image.mime_type))
            parts.append(ContentPart.from_text(f"Filename: {image.name}"))

        response = await self.gateway.call(
            partial(
                self.provider.complete,
                parts,
                model=self.model,
                response_format=ResponseFormat(type="json_object"),
            )
        )

        if response.usage is not None and response.usage.total_tokens > 0:
            result.token_usage += response.usage.total_tokens
            progress.emit(
                ProgressEvent(
                    kind="usage",
                    stage=Stage.ANALYZING_IMAGES,
                    tokens=response.usage.total_tokens,
                )
            )

        captions = parse_captions(response.content)
        matched = 0
        for name, description in captions.items():
            image = known.get(name)
            if image is None:
                log.debug("Ignoring caption for unknown image", name=name)
                continue
            image.description = description
            matched += 1
        return matched
