"""Image extraction from PDF pages."""

import anyio
from PIL import Image

from magtoepub.config.constants import (
    CONTENT_IMAGE_JPEG_QUALITY,
    COVER_DESCRIPTION,
    COVER_JPEG_QUALITY,
    COVER_RENDER_SCALE,
    EXTRACTION_CONCURRENCY,
    MAX_IMAGE_WIDTH,
    MIN_IMAGE_DIMENSION,
)
from magtoepub.core.state import ProgressChannel, ProgressEvent, Stage, StageResult, percent
from magtoepub.document import DocumentHandle, PageSurface, encode_jpeg
from magtoepub.image.models import ExtractedImage
from magtoepub.utils.logging import get_logger

log = get_logger(__name__)


class ImageExtractor:
    """Pull, filter, normalize and order the raster images of a document.

    Page 1 is rendered whole as the cover. Every other page contributes its
    embedded raster objects that reach ``min_dimension`` on both axes,
    downscaled to ``max_width`` and re-encoded as JPEG.

    Pages are processed ``concurrency`` at a time, each task on its own
    surface. Results are sorted by (page, index) after every group has
    joined, so the output does not depend on completion order.
    """

    def __init__(
        self,
        min_dimension: int = MIN_IMAGE_DIMENSION,
        max_width: int = MAX_IMAGE_WIDTH,
        jpeg_quality: int = CONTENT_IMAGE_JPEG_QUALITY,
        cover_scale: float = COVER_RENDER_SCALE,
        cover_quality: int = COVER_JPEG_QUALITY,
        concurrency: int = EXTRACTION_CONCURRENCY,
    ) -> None:
        self.min_dimension = min_dimension
        self.max_width = max_width
        self.jpeg_quality = jpeg_quality
        self.cover_scale = cover_scale
        self.cover_quality = cover_quality
        self.concurrency = concurrency

    async def extract(
        self,
        document: DocumentHandle,
        progress: ProgressChannel | None = None,
    ) -> StageResult[list[ExtractedImage]]:
        """Extract images from every page of the document.

        Args:
            document: Loaded document
            progress: Channel receiving a percentage after each page group

        Returns:
            Images sorted by (page, index); ``partial`` if some pages failed
        """
        progress = progress or ProgressChannel()
        total_pages = document.page_count
        images: list[ExtractedImage] = []
        errors: list[str] = []
        processed = 0

        async def run_page(page_number: int) -> None:
            try:
                page_images = await anyio.to_thread.run_sync(
                    self._process_page, document, page_number
                )
            except Exception as e:
                log.warning("Error processing page", page=page_number, error=str(e))
                errors.append(f"page {page_number}: {e}")
                return
            images.extend(page_images)

        for group_start in range(1, total_pages + 1, self.concurrency):
            group = range(group_start, min(group_start + self.concurrency, total_pages + 1))
            async with anyio.create_task_group() as tg:
                for page_number in group:
                    tg.start_soon(run_page, page_number)

            processed += len(group)
            progress.emit(
                ProgressEvent(
                    kind="progress",
                    stage=Stage.EXTRACTING_IMAGES,
                    progress=percent(processed, total_pages),
                    message=f"Scanning page {processed} of {total_pages}...",
                )
            )

        images.sort(key=lambda image: image.sort_key)
        log.info(
            "Extracted images",
            count=len(images),
            pages=total_pages,
            failed_pages=len(errors),
        )

        if not errors:
            return StageResult(images)
        status = "partial" if len(errors) < total_pages else "failed"
        return StageResult(images, status=status, errors=errors)

    def _process_page(self, document: DocumentHandle, page_number: int) -> list[ExtractedImage]:
        """Extract one page's images on a private surface (runs in a worker thread)."""
        with document.open_surface() as surface:
            if page_number == 1:
                return [self._render_cover(surface)]
            return self._extract_page_images(surface, page_number)

    def _render_cover(self, surface: PageSurface) -> ExtractedImage:
        data = surface.render(1, self.cover_scale, self.cover_quality)
        log.debug("Rendered cover", size=len(data))
        return ExtractedImage(page=1, index=1, data=data, description=COVER_DESCRIPTION)

    def _extract_page_images(self, surface: PageSurface, page_number: int) -> list[ExtractedImage]:
        images: list[ExtractedImage] = []
        index = 1

        for raster in surface.raster_objects(page_number):
            # Icons, rules and noise
            if raster.width < self.min_dimension or raster.height < self.min_dimension:
                continue

            try:
                img = surface.decode_raster(page_number, raster.ref)
                data = self._normalize(img)
            except Exception as e:
                log.debug(
                    "Skipping undecodable image",
                    page=page_number,
                    ref=raster.ref,
                    error=str(e),
                )
                continue

            images.append(ExtractedImage(page=page_number, index=index, data=data))
            log.debug("Extracted image", name=images[-1].name, size=len(data))
            index += 1

        return images

    def _normalize(self, img: Image.Image) -> bytes:
        """Downscale to ``max_width`` keeping aspect ratio, then JPEG-encode."""
        width, height = img.size
        if width > self.max_width:
            new_height = max(1, round(height * self.max_width / width))
            log.debug(
                "Resizing image",
                original=f"{width}x{height}",
                new=f"{self.max_width}x{new_height}",
            )
            if img.mode not in ("RGB", "L"):
                img = img.convert("RGB")
            img = img.resize((self.max_width, new_height), Image.Resampling.LANCZOS)
        return encode_jpeg(img, self.jpeg_quality)
