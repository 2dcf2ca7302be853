"""PDF document access.

The conversion core never touches PyMuPDF directly. It reads documents through
``DocumentHandle`` and ``PageSurface``: page count, text runs, raster objects
and page rendering. ``PyMuPDFDocument`` is the production binding; tests use
in-memory fakes.

Page numbers are 1-based everywhere in this module.
"""

import io
from dataclasses import dataclass
from pathlib import Path
from types import TracebackType
from typing import Any, Protocol

from PIL import Image

from magtoepub.exceptions import DocumentLoadError, ImageProcessingError
from magtoepub.utils.logging import get_logger

log = get_logger(__name__)


@dataclass(frozen=True)
class RasterObject:
    """A raster image painted on a page, before decoding."""

    ref: int  # object reference (xref for PDF)
    width: int
    height: int


class PageSurface(Protocol):
    """Per-task view of a document. Never share one between concurrent tasks."""

    def text_runs(self, page_number: int) -> list[str]: ...

    def raster_objects(self, page_number: int) -> list[RasterObject]: ...

    def decode_raster(self, page_number: int, ref: int) -> Image.Image: ...

    def render(self, page_number: int, scale: float, quality: int) -> bytes: ...

    def close(self) -> None: ...

    def __enter__(self) -> "PageSurface": ...

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None: ...


class DocumentHandle(Protocol):
    """A loaded document that can hand out independent surfaces."""

    page_count: int

    def open_surface(self) -> PageSurface: ...


def encode_jpeg(img: Image.Image, quality: int) -> bytes:
    """Encode a PIL image as JPEG, dropping alpha and exotic color modes."""
    if img.mode != "RGB":
        img = img.convert("RGB")
    output = io.BytesIO()
    img.save(output, format="JPEG", quality=quality, optimize=True)
    return output.getvalue()


class PyMuPDFSurface:
    """A private PyMuPDF document opened from the shared PDF bytes."""

    def __init__(self, data: bytes) -> None:
        import pymupdf

        self._doc: Any = pymupdf.open(stream=data, filetype="pdf")

    @property
    def page_count(self) -> int:
        return self._doc.page_count

    def _page(self, page_number: int) -> Any:
        return self._doc.load_page(page_number - 1)

    def text_runs(self, page_number: int) -> list[str]:
        """Return every text span on the page."""
        page = self._page(page_number)
        runs: list[str] = []
        for block in page.get_text("dict").get("blocks", []):
            for line in block.get("lines", []):
                for span in line.get("spans", []):
                    runs.append(span.get("text", ""))
        return runs

    def raster_objects(self, page_number: int) -> list[RasterObject]:
        """Return referenced raster objects in paint order, once per object."""
        page = self._page(page_number)
        seen: set[int] = set()
        objects: list[RasterObject] = []
        for info in page.get_image_info(xrefs=True):
            xref = info.get("xref", 0)
            # xref 0 means an inline image with no object to fetch
            if not xref or xref in seen:
                continue
            seen.add(xref)
            objects.append(
                RasterObject(
                    ref=xref,
                    width=int(info.get("width", 0)),
                    height=int(info.get("height", 0)),
                )
            )
        return objects

    def decode_raster(self, page_number: int, ref: int) -> Image.Image:
        """Decode one raster object into a PIL image.

        Raises:
            ImageProcessingError: If the object cannot be extracted or decoded
        """
        base_image = self._doc.extract_image(ref)
        if not base_image or not base_image.get("image"):
            raise ImageProcessingError(f"No image data for xref {ref} on page {page_number}")
        try:
            img = Image.open(io.BytesIO(base_image["image"]))
            img.load()
        except Exception as e:
            raise ImageProcessingError(
                f"Undecodable image xref {ref} ({base_image.get('ext')}) on page {page_number}"
            ) from e
        return img

    def render(self, page_number: int, scale: float, quality: int) -> bytes:
        """Render the whole page to JPEG."""
        import pymupdf

        page = self._page(page_number)
        pix = page.get_pixmap(matrix=pymupdf.Matrix(scale, scale), alpha=False)
        img = Image.frombytes("RGB", (pix.width, pix.height), pix.samples)
        return encode_jpeg(img, quality)

    def close(self) -> None:
        self._doc.close()

    def __enter__(self) -> "PyMuPDFSurface":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()


class PyMuPDFDocument:
    """PDF document backed by PyMuPDF.

    The file is read once; every surface re-opens its own ``pymupdf.Document``
    from those bytes because PyMuPDF documents are not thread-safe.
    """

    def __init__(self, data: bytes, name: str = "document.pdf") -> None:
        self._data = data
        self.name = name
        with self.open_surface() as surface:
            self.page_count: int = surface.page_count

    def open_surface(self) -> PyMuPDFSurface:
        return PyMuPDFSurface(self._data)


def open_document(file_path: Path) -> PyMuPDFDocument:
    """Load a PDF file.

    Raises:
        DocumentLoadError: If the file is missing, unreadable, not a PDF or empty
    """
    try:
        data = file_path.read_bytes()
    except OSError as e:
        raise DocumentLoadError(file_path, str(e), e) from e

    try:
        document = PyMuPDFDocument(data, name=file_path.name)
    except Exception as e:
        raise DocumentLoadError(file_path, f"not a readable PDF ({e})", e) from e

    if document.page_count == 0:
        raise DocumentLoadError(file_path, "document has no pages")

    log.info("Document loaded", file=str(file_path), pages=document.page_count)
    return document


def render_pages(
    document: DocumentHandle,
    page_numbers: list[int],
    scale: float,
    quality: int,
) -> list[bytes]:
    """Render pages to JPEG for the text-generation request, in the given order.

    Pages that fail to render, or lie past the end of the document, are
    logged and skipped.
    """
    rendered: list[bytes] = []
    with document.open_surface() as surface:
        for page_number in page_numbers:
            if page_number > document.page_count:
                continue
            try:
                rendered.append(surface.render(page_number, scale, quality))
            except Exception as e:
                log.error("Failed to render page for AI", page=page_number, error=str(e))
    return rendered
