"""EPUB packaging module for MagToEpub."""

from magtoepub.epub.assembler import (
    EpubPackage,
    PackageAssembler,
    build_toc,
    validate_package,
)
from magtoepub.epub.transform import TocEntry, render_markdown

__all__ = [
    "EpubPackage",
    "PackageAssembler",
    "build_toc",
    "validate_package",
    "TocEntry",
    "render_markdown",
]
