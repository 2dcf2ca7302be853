"""Markdown to XHTML body transform.

One pass over the parsed Markdown tree assigns ``section-N`` anchors to every
heading in document order, records level 1 and 2 headings as TOC entries,
and points image references at the package's ``images/`` directory.
"""

import html
import xml.etree.ElementTree as etree
from collections.abc import Collection
from dataclasses import dataclass

import markdown
from markdown.extensions import Extension
from markdown.extensions.toc import render_inner_html, strip_tags
from markdown.treeprocessors import Treeprocessor

from magtoepub.utils.logging import get_logger

log = get_logger(__name__)

IMAGE_DIR = "images"
HEADING_TAGS = ("h1", "h2", "h3", "h4", "h5", "h6")
TOC_MAX_LEVEL = 2


@dataclass(frozen=True)
class TocEntry:
    """A table of contents link into the content document."""

    anchor_id: str
    text: str
    level: int


class EpubTreeprocessor(Treeprocessor):
    """Anchor headings and resolve image paths in place."""

    def __init__(self, md: markdown.Markdown, image_names: Collection[str]) -> None:
        super().__init__(md)
        self.image_names = image_names
        self.toc: list[TocEntry] = []

    def run(self, root: etree.Element) -> None:
        self.toc = []
        heading_count = 0

        for parent in list(root.iter()):
            for child in list(parent):
                if child.tag == "img":
                    self._resolve_image(parent, child)

        for element in root.iter():
            if element.tag not in HEADING_TAGS:
                continue
            anchor_id = f"section-{heading_count}"
            heading_count += 1
            element.set("id", anchor_id)

            level = int(element.tag[1])
            if level <= TOC_MAX_LEVEL:
                self.toc.append(TocEntry(anchor_id, self._plain_text(element), level))

    def _plain_text(self, element: etree.Element) -> str:
        """Heading text with inline markup and raw HTML tags removed."""
        return html.unescape(strip_tags(render_inner_html(element, self.md))).strip()

    def _resolve_image(self, parent: etree.Element, image: etree.Element) -> None:
        src = image.get("src", "")
        name = src.removeprefix(f"{IMAGE_DIR}/")
        if name in self.image_names:
            image.set("src", f"{IMAGE_DIR}/{name}")
            return

        log.warning("Dropping reference to unknown image", src=src)
        _remove_keeping_tail(parent, image)


def _remove_keeping_tail(parent: etree.Element, child: etree.Element) -> None:
    tail = child.tail or ""
    index = list(parent).index(child)
    if tail:
        if index == 0:
            parent.text = (parent.text or "") + tail
        else:
            previous = parent[index - 1]
            previous.tail = (previous.tail or "") + tail
    parent.remove(child)


class EpubExtension(Extension):
    """Registers the EPUB treeprocessor after inline patterns have run."""

    def __init__(self, image_names: Collection[str], **kwargs) -> None:
        self.image_names = image_names
        self.processor: EpubTreeprocessor | None = None
        super().__init__(**kwargs)

    def extendMarkdown(self, md: markdown.Markdown) -> None:
        self.processor = EpubTreeprocessor(md, self.image_names)
        # Inline processing runs at 20, prettify at 10
        md.treeprocessors.register(self.processor, "epub", 4)


def render_markdown(
    text: str, image_names: Collection[str]
) -> tuple[str, list[TocEntry]]:
    """Convert markdown to an XHTML body fragment.

    Args:
        text: Markdown document
        image_names: Names of images the package will contain

    Returns:
        Tuple of (XHTML fragment, TOC entries in document order)
    """
    extension = EpubExtension(frozenset(image_names))
    md = markdown.Markdown(extensions=[extension], output_format="xhtml")
    body = md.convert(text)
    toc = extension.processor.toc if extension.processor else []
    log.debug("Rendered content document", chars=len(body), toc_entries=len(toc))
    return body, toc
