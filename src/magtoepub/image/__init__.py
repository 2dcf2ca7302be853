"""Image processing module for MagToEpub."""

from magtoepub.image.models import (
    ExtractedImage,
    format_image_name,
    is_cover_name,
)

__all__ = [
    "ExtractedImage",
    "format_image_name",
    "is_cover_name",
]
