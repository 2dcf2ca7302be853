"""EPUB 3 package assembly with ebooklib."""

import io
import uuid
import zipfile
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from ebooklib import epub
from lxml import etree

from magtoepub.config.constants import APP_CREATOR
from magtoepub.epub.transform import TocEntry, render_markdown
from magtoepub.exceptions import PackagingError
from magtoepub.image.models import ExtractedImage, is_cover_name
from magtoepub.utils.fs import atomic_write
from magtoepub.utils.logging import get_logger

log = get_logger(__name__)

PACKAGE_DIR = "EPUB"
CONTENT_FILE = "content.xhtml"
FALLBACK_TOC_TITLE = "Begin Reading"

STYLES_CSS = """
body { font-family: "Helvetica Neue", Helvetica, Arial, sans-serif; line-height: 1.6; padding: 20px; }
h1 { color: #2c3e50; page-break-before: always; text-align: center; margin-top: 2em; margin-bottom: 1em; }
h2 { color: #34495e; margin-top: 1.5em; border-bottom: 1px solid #eee; padding-bottom: 0.5em; }
p { margin-bottom: 1em; text-align: justify; }
blockquote { border-left: 4px solid #3498db; padding-left: 1em; color: #7f8c8d; font-style: italic; margin: 1.5em 0; }
img { max-width: 100%; height: auto; display: block; margin: 20px auto; border-radius: 4px; }
nav ol { list-style-type: none; }
nav li { margin-bottom: 0.5em; }
nav a { text-decoration: none; color: #2980b9; }
"""

NCX_NAMESPACE = "http://www.daisy.org/z3986/2005/ncx/"

WRITE_OPTIONS = {
    "play_order": {"enabled": True, "start_from": 1},
}


@dataclass(frozen=True)
class ManifestItem:
    id: str
    href: str
    media_type: str
    properties: str | None = None


@dataclass
class EpubPackage:
    """An assembled EPUB archive and what went into it."""

    data: bytes
    toc: list[TocEntry]
    manifest: list[ManifestItem]
    spine: list[str]
    has_cover: bool

    def write(self, path: Path) -> Path:
        with atomic_write(path, "wb") as f:
            f.write(self.data)
        log.info("EPUB written", path=str(path), size=len(self.data))
        return path


def _link(entry: TocEntry) -> epub.Link:
    return epub.Link(f"{CONTENT_FILE}#{entry.anchor_id}", entry.text, entry.anchor_id)


def build_toc(entries: Sequence[TocEntry]) -> list:
    """Arrange TOC entries the way ebooklib expects them.

    Level 2 entries nest under the preceding level 1 entry; a level 2 entry
    with no level 1 before it stays at the top. With no entries at all the
    TOC is a single link to the start of the content.

    Returns:
        ``epub.Link`` items and ``(epub.Section, [epub.Link, ...])`` pairs
    """
    if not entries:
        return [epub.Link(CONTENT_FILE, FALLBACK_TOC_TITLE, "begin-reading")]

    groups: list[tuple[TocEntry, list[TocEntry]]] = []
    for entry in entries:
        if entry.level == 1 or not groups or groups[-1][0].level != 1:
            groups.append((entry, []))
        else:
            groups[-1][1].append(entry)

    toc: list = []
    for entry, children in groups:
        if children:
            section = epub.Section(entry.text, f"{CONTENT_FILE}#{entry.anchor_id}")
            toc.append((section, [_link(child) for child in children]))
        else:
            toc.append(_link(entry))
    return toc


def toc_depth(toc: Sequence) -> int:
    """Nesting depth of an ebooklib TOC built by ``build_toc``."""
    return 2 if any(isinstance(item, tuple) for item in toc) else 1


class NcxDepthWriter(epub.EpubWriter):
    """Writer whose nav map declares the TOC's nesting depth.

    ebooklib always writes ``dtb:depth`` as 0.
    """

    def _get_ncx(self) -> bytes:
        root = etree.fromstring(super()._get_ncx())
        for meta in root.iter(f"{{{NCX_NAMESPACE}}}meta"):
            if meta.get("name") == "dtb:depth":
                meta.set("content", str(toc_depth(self.book.toc)))
        return etree.tostring(root, pretty_print=True, encoding="utf-8", xml_declaration=True)


def _manifest_item(item: epub.EpubItem) -> ManifestItem:
    if isinstance(item, epub.EpubCover):
        properties: str | None = "cover-image"
    elif isinstance(item, epub.EpubNav):
        properties = "nav"
    else:
        properties = " ".join(getattr(item, "properties", [])) or None
    return ManifestItem(item.id, item.file_name, item.media_type, properties)


class PackageAssembler:
    """Builds the EPUB archive from the final markdown and image set.

    ebooklib lays the archive out as::

        mimetype                      (stored, first)
        META-INF/container.xml
        EPUB/content.opf
        EPUB/toc.ncx
        EPUB/nav.xhtml
        EPUB/styles.css
        EPUB/cover.xhtml              (only with a cover image)
        EPUB/content.xhtml
        EPUB/images/<name>
    """

    def build(
        self,
        title: str,
        markdown: str,
        images: Sequence[ExtractedImage],
        uid: str | None = None,
    ) -> EpubPackage:
        """Assemble the archive.

        Args:
            title: Book title
            markdown: Final markdown document
            images: Images to package, in order
            uid: Package identifier (random UUID if omitted)

        Returns:
            The archive bytes plus its TOC, manifest and spine

        Raises:
            PackagingError: If the archive fails the structural check
        """
        body, toc = render_markdown(markdown, {image.name for image in images})

        book = epub.EpubBook()
        book.set_identifier(f"urn:uuid:{uid or uuid.uuid4()}")
        book.set_title(title)
        book.set_language("en")
        book.add_author(APP_CREATOR)

        styles = epub.EpubItem(
            uid="styles", file_name="styles.css", media_type="text/css", content=STYLES_CSS
        )
        book.add_item(styles)

        has_cover = False
        for image in images:
            href = f"images/{image.name}"
            if is_cover_name(image.name):
                book.set_cover(href, image.data, create_page=True)
                has_cover = True
            else:
                book.add_item(
                    epub.EpubImage(
                        uid=image.name.replace(".", "_"),
                        file_name=href,
                        media_type=image.mime_type,
                        content=image.data,
                    )
                )

        content = epub.EpubHtml(title=title, file_name=CONTENT_FILE, lang="en", uid="content")
        # ebooklib writes an empty file for a document with no body elements
        content.content = body or "<p></p>"
        content.add_item(styles)
        book.add_item(content)

        book.toc = build_toc(toc)
        book.add_item(epub.EpubNcx())
        nav = epub.EpubNav()
        nav.add_item(styles)
        book.add_item(nav)

        spine: list[str] = ["nav", "content"]
        if has_cover:
            # The generated cover page is non-linear by default
            book.get_item_with_id("cover").is_linear = True
            spine.insert(0, "cover")
            book.guide.append({"type": "cover", "title": "Cover", "href": "cover.xhtml"})
        book.guide.append({"type": "toc", "title": "Table of Contents", "href": "nav.xhtml"})
        book.guide.append({"type": "text", "title": "Start", "href": CONTENT_FILE})
        book.spine = spine

        buffer = io.BytesIO()
        writer = NcxDepthWriter(buffer, book, WRITE_OPTIONS)
        writer.process()
        writer.write()
        data = buffer.getvalue()

        manifest = [_manifest_item(item) for item in book.get_items() if item.manifest]
        validate_package(data, manifest, spine)

        log.info(
            "EPUB assembled",
            title=title,
            size=len(data),
            images=len(images),
            toc_entries=len(toc),
            cover=has_cover,
        )
        return EpubPackage(data=data, toc=toc, manifest=manifest, spine=spine, has_cover=has_cover)


def validate_package(data: bytes, manifest: list[ManifestItem], spine: list[str]) -> None:
    """Check that the archive is structurally complete.

    Raises:
        PackagingError: On a misplaced mimetype entry, a missing container or
            package document, a manifest item with no file behind it, a
            duplicate manifest id, or a spine reference to an unknown id
    """
    with zipfile.ZipFile(io.BytesIO(data)) as zf:
        entries = zf.infolist()
        names = {entry.filename for entry in entries}
        first = entries[0] if entries else None

    if first is None or first.filename != "mimetype" or first.compress_type != zipfile.ZIP_STORED:
        raise PackagingError("mimetype must be the first, uncompressed entry")

    for required in ("META-INF/container.xml", f"{PACKAGE_DIR}/content.opf"):
        if required not in names:
            raise PackagingError(f"Missing {required}")

    missing = [item.href for item in manifest if f"{PACKAGE_DIR}/{item.href}" not in names]
    if missing:
        raise PackagingError(f"Manifest entries without files: {', '.join(missing)}")

    ids = [item.id for item in manifest]
    if len(ids) != len(set(ids)):
        raise PackagingError("Duplicate manifest ids")

    unknown = [idref for idref in spine if idref not in ids]
    if unknown:
        raise PackagingError(f"Spine references unknown ids: {', '.join(unknown)}")
