"""Conversion pipeline.

The ConversionOrchestrator drives one PDF through the stages below, in order:

1. Loading: open the document and count its pages (fatal on failure)
2. Extracting images: ImageExtractor (best-effort)
3. Analyzing images: ImageCaptioner, only when images exist (best-effort)
4. Generating text: BatchPlanner, then one streamed AI request per batch,
   strictly sequential

The orchestrator owns the ConversionState. Stages report back through their
return values and through ordered ProgressEvents on the caller's stream.
"""

from collections.abc import Awaitable, Callable
from functools import partial
from pathlib import Path

import anyio
from anyio.streams.memory import MemoryObjectSendStream

from magtoepub.config.settings import MagtoepubSettings
from magtoepub.core.planner import BatchPlanner, PageBatch
from magtoepub.core.state import (
    ConversionState,
    ProgressChannel,
    ProgressEvent,
    Stage,
    percent,
)
from magtoepub.document import DocumentHandle, open_document, render_pages
from magtoepub.exceptions import ConversionError, DocumentLoadError
from magtoepub.image.captioner import ImageCaptioner
from magtoepub.image.extractor import ImageExtractor
from magtoepub.llm.base import BaseLLMProvider, ContentPart
from magtoepub.llm.gateway import AIGateway, RetryPolicy
from magtoepub.llm.prompts import build_extraction_prompt
from magtoepub.utils.logging import get_logger, run_context

log = get_logger(__name__)

BATCH_SEPARATOR = "\n\n"

DocumentLoader = Callable[[Path], DocumentHandle]


class ConversionOrchestrator:
    """Top-level state machine for a single conversion run.

    A run that ends in COMPLETE or ERROR is final; call ``run`` again to start
    over from scratch.
    """

    def __init__(
        self,
        provider: BaseLLMProvider,
        settings: MagtoepubSettings,
        # Dependency injection (optional, for testing)
        document_loader: DocumentLoader = open_document,
        planner: BatchPlanner | None = None,
        extractor: ImageExtractor | None = None,
        captioner: ImageCaptioner | None = None,
        gateway: AIGateway | None = None,
        sleep: Callable[[float], Awaitable[None]] = anyio.sleep,
    ) -> None:
        self.provider = provider
        self.settings = settings
        self._document_loader = document_loader
        self._sleep = sleep

        self.gateway = gateway or AIGateway(
            RetryPolicy(
                retries=settings.llm.retry_attempts,
                initial_delay=settings.llm.retry_initial_delay,
            ),
            sleep=sleep,
        )
        self.planner = planner or BatchPlanner(
            max_chars=settings.batching.max_chars_per_batch,
            max_pages=settings.batching.max_pages_per_batch,
            fallback_weight=settings.batching.fallback_page_weight,
        )
        self.extractor = extractor or ImageExtractor(
            min_dimension=settings.image.min_dimension,
            max_width=settings.image.max_width,
            jpeg_quality=settings.image.jpeg_quality,
            cover_scale=settings.image.cover_scale,
            cover_quality=settings.image.cover_quality,
            concurrency=settings.image.extraction_concurrency,
        )
        self.captioner = captioner or ImageCaptioner(
            provider,
            gateway=self.gateway,
            model=settings.llm.caption_model,
            batch_size=settings.image.caption_batch_size,
            batch_delay=settings.image.caption_batch_delay,
            sleep=sleep,
        )

        self.state = ConversionState()
        self._progress = ProgressChannel()

    async def run(
        self,
        file_path: Path,
        title: str | None = None,
        events: MemoryObjectSendStream[ProgressEvent] | None = None,
    ) -> ConversionState:
        """Convert one document to markdown plus images.

        Args:
            file_path: Input PDF
            title: Book title (defaults to the file name without extension)
            events: Optional stream receiving progress events, in order

        Returns:
            The final state, in either COMPLETE or ERROR
        """
        self.state.reset(title or file_path.stem)
        self._progress = ProgressChannel(events)

        with run_context(document=file_path.name) as run_id:
            log.info("Starting conversion", file=str(file_path), run_id=run_id)
            try:
                document = await self._load(file_path)
                await self._extract_images(document)
                await self._analyze_images()
                await self._generate_text(document)
            except DocumentLoadError as e:
                self._fail(str(e))
            except Exception as e:
                error = ConversionError(str(e) or "Failed to process PDF with AI.", cause=e)
                self._fail(str(error))
            else:
                self.state.progress = 100
                self._set_stage(Stage.COMPLETE, "Conversion complete")
                log.info("Conversion complete", **vars(self.state.stats()))

        return self.state

    async def _load(self, file_path: Path) -> DocumentHandle:
        self._set_stage(Stage.LOADING, "Loading document structure...")
        document = await anyio.to_thread.run_sync(self._document_loader, file_path)
        self.state.total_pages = document.page_count
        return document

    async def _extract_images(self, document: DocumentHandle) -> None:
        self._set_stage(Stage.EXTRACTING_IMAGES, "Extracting images...")
        try:
            result = await self.extractor.extract(document, self._progress)
        except Exception as e:
            log.warning("Image extraction failed, continuing without images", error=str(e))
            self.state.images = []
            return

        if not result.ok:
            log.warning(
                "Image extraction incomplete",
                status=result.status,
                errors=len(result.errors),
            )
        self.state.images = result.value

    async def _analyze_images(self) -> None:
        if not self.state.images:
            log.info("No images to analyze")
            return

        self._set_stage(Stage.ANALYZING_IMAGES, "AI is labeling extracted images...")
        try:
            result = await self.captioner.caption(self.state.images, self._progress)
        except Exception as e:
            log.warning("Image captioning failed, proceeding with unlabeled images", error=str(e))
            return

        self.state.images = result.value
        self.state.token_usage += result.token_usage
        if result.failed:
            log.warning("No captions obtained", errors=result.errors)

    async def _generate_text(self, document: DocumentHandle) -> None:
        self._set_stage(Stage.GENERATING_TEXT, "Optimizing reading flow...")
        batches = await self.planner.plan(document)

        processed_pages = 0
        for number, batch in enumerate(batches, start=1):
            self._update(
                f"Analyzing pages {batch.first_page} to {batch.last_page} "
                f"of {self.state.total_pages}..."
            )
            await self._generate_batch(document, batch)

            self.state.markdown += BATCH_SEPARATOR
            processed_pages += len(batch)
            self.state.progress = percent(processed_pages, self.state.total_pages)
            self._progress.emit(
                ProgressEvent(
                    kind="progress",
                    stage=Stage.GENERATING_TEXT,
                    progress=self.state.progress,
                    message=f"Processed {processed_pages} of {self.state.total_pages} pages",
                )
            )

            if number < len(batches):
                await self._sleep(self.settings.batching.text_batch_delay)

    async def _generate_batch(self, document: DocumentHandle, batch: PageBatch) -> None:
        page_images = await anyio.to_thread.run_sync(
            render_pages,
            document,
            list(batch.pages),
            self.settings.image.page_scale,
            self.settings.image.page_quality,
        )
        inventory = [
            image
            for image in self.state.images
            if image.in_pages(batch.first_page, batch.last_page)
        ]

        parts = [ContentPart.from_text(build_extraction_prompt(len(page_images), inventory))]
        parts.extend(ContentPart.from_image(data) for data in page_images)

        log.debug(
            "Sending text batch",
            pages=f"{batch.first_page}-{batch.last_page}",
            rendered=len(page_images),
            inventory=[image.name for image in inventory],
        )

        stream = await self.gateway.call(
            partial(self.provider.stream, parts, model=self.settings.llm.text_model),
            on_retry=self._on_retry,
        )

        batch_tokens = 0
        async for chunk in stream:
            if chunk.text:
                self.state.markdown += chunk.text
                self._progress.emit(
                    ProgressEvent(kind="chunk", stage=Stage.GENERATING_TEXT, text=chunk.text)
                )
            if chunk.total_tokens:
                batch_tokens = chunk.total_tokens

        if batch_tokens > 0:
            self.state.token_usage += batch_tokens
            self._progress.emit(
                ProgressEvent(kind="usage", stage=Stage.GENERATING_TEXT, tokens=batch_tokens)
            )

    def _on_retry(self, delay: float) -> None:
        message = f"Rate limit hit. Pausing for {delay:g}s to refill quota..."
        self.state.message = message
        self._progress.emit(
            ProgressEvent(kind="retry", stage=self.state.stage, message=message, delay=delay)
        )

    def _fail(self, message: str) -> None:
        log.error("Conversion failed", stage=self.state.stage.value, error=message)
        # No partial-document resume
        self.state.markdown = ""
        self.state.images = []
        self.state.error = message
        self._set_stage(Stage.ERROR, message)

    def _set_stage(self, stage: Stage, message: str) -> None:
        self.state.stage = stage
        self.state.message = message
        if stage not in (Stage.COMPLETE, Stage.ERROR):
            self.state.progress = 0
        self._progress.emit(
            ProgressEvent(
                kind="stage",
                stage=stage,
                message=message,
                progress=self.state.progress,
            )
        )

    def _update(self, message: str) -> None:
        self.state.message = message
        self._progress.emit(
            ProgressEvent(
                kind="progress",
                stage=self.state.stage,
                progress=self.state.progress,
                message=message,
            )
        )
