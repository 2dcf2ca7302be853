"""Extracted image model and the ``image_p<page>_i<index>.jpg`` naming convention."""

from dataclasses import dataclass

from magtoepub.config.constants import COVER_IMAGE_NAME, IMAGE_MIME_TYPE


def format_image_name(page: int, index: int) -> str:
    """Build the filename that links an image across every stage."""
    return f"image_p{page}_i{index}.jpg"


def is_cover_name(name: str) -> bool:
    return name == COVER_IMAGE_NAME


@dataclass
class ExtractedImage:
    """An image pulled from the document, ready for captioning and packaging.

    Page and index are carried as fields; ``name`` serializes them to the
    filename used in prompts, markdown references and the EPUB archive.
    """

    page: int
    index: int
    data: bytes
    mime_type: str = IMAGE_MIME_TYPE
    description: str | None = None

    @property
    def name(self) -> str:
        return format_image_name(self.page, self.index)

    @property
    def is_cover(self) -> bool:
        return self.page == 1 and self.index == 1

    @property
    def sort_key(self) -> tuple[int, int]:
        return self.page, self.index

    def in_pages(self, first_page: int, last_page: int) -> bool:
        """Check whether the image came from a page in ``[first_page, last_page]``."""
        return first_page <= self.page <= last_page
