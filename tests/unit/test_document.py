"""Tests for the PyMuPDF document capability."""

import io

import pymupdf
import pytest
from PIL import Image

from magtoepub.document import encode_jpeg, open_document, render_pages
from magtoepub.exceptions import DocumentLoadError


def _png(width: int, height: int) -> bytes:
    output = io.BytesIO()
    Image.new("RGB", (width, height), color=(20, 120, 200)).save(output, format="PNG")
    return output.getvalue()


@pytest.fixture
def pdf_path(tmp_path):
    """Two-page PDF: text on page 1, text plus one photo on page 2."""
    doc = pymupdf.open()
    page = doc.new_page()
    page.insert_text((72, 72), "Spring Issue")
    page = doc.new_page()
    page.insert_text((72, 72), "Feature story")
    page.insert_image(pymupdf.Rect(72, 100, 372, 325), stream=_png(400, 300))
    path = tmp_path / "issue.pdf"
    doc.save(str(path))
    doc.close()
    return path


class TestOpenDocument:
    def test_page_count(self, pdf_path):
        document = open_document(pdf_path)

        assert document.page_count == 2
        assert document.name == "issue.pdf"

    def test_missing_file(self, tmp_path):
        with pytest.raises(DocumentLoadError, match="Could not load"):
            open_document(tmp_path / "missing.pdf")

    def test_not_a_pdf(self, tmp_path):
        path = tmp_path / "notes.pdf"
        path.write_bytes(b"definitely not a pdf")

        with pytest.raises(DocumentLoadError, match="not a readable PDF"):
            open_document(path)


class TestPyMuPDFSurface:
    def test_text_runs(self, pdf_path):
        document = open_document(pdf_path)

        with document.open_surface() as surface:
            assert "Spring Issue" in "".join(surface.text_runs(1))

    def test_raster_objects(self, pdf_path):
        document = open_document(pdf_path)

        with document.open_surface() as surface:
            assert surface.raster_objects(1) == []
            rasters = surface.raster_objects(2)
            assert len(rasters) == 1
            assert (rasters[0].width, rasters[0].height) == (400, 300)

            img = surface.decode_raster(2, rasters[0].ref)
            assert img.size == (400, 300)

    def test_surfaces_are_independent(self, pdf_path):
        document = open_document(pdf_path)

        with document.open_surface() as first, document.open_surface() as second:
            assert first.text_runs(2) == second.text_runs(2)


def test_render_pages_in_order(pdf_path):
    document = open_document(pdf_path)

    rendered = render_pages(document, [2, 1, 5], scale=0.5, quality=70)

    assert len(rendered) == 2
    for data in rendered:
        assert data.startswith(b"\xff\xd8")
    page_one = Image.open(io.BytesIO(rendered[1]))
    # Default page is A4 (595 x 842 points)
    assert page_one.size[0] < 320


def test_encode_jpeg_drops_alpha():
    data = encode_jpeg(Image.new("RGBA", (10, 10), (0, 0, 0, 0)), quality=80)

    assert Image.open(io.BytesIO(data)).mode == "RGB"
