"""Tests for EPUB package assembly."""

import io
import zipfile

import pytest
from ebooklib import epub
from lxml import etree

from magtoepub.epub.assembler import (
    ManifestItem,
    PackageAssembler,
    build_toc,
    toc_depth,
    validate_package,
)
from magtoepub.epub.transform import TocEntry
from magtoepub.exceptions import PackagingError
from magtoepub.image.models import ExtractedImage

MARKDOWN = """# Spring Feature

Intro text.

![Skyline at dusk](image_p2_i1.jpg)

## Interview

**What inspired you?**

> A pull quote
"""


def open_zip(data: bytes) -> zipfile.ZipFile:
    return zipfile.ZipFile(io.BytesIO(data))


def build_zip(entries: list[tuple[str, bytes, int]]) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as zf:
        for name, content, compression in entries:
            zf.writestr(name, content, compress_type=compression)
    return buffer.getvalue()


@pytest.fixture
def package(sample_images):
    return PackageAssembler().build("Spring & Summer", MARKDOWN, sample_images, uid="1234-abcd")


class TestBuildToc:
    def test_level_two_nests_under_level_one(self):
        toc = build_toc(
            [
                TocEntry("section-0", "Feature", 1),
                TocEntry("section-1", "Interview", 2),
                TocEntry("section-2", "Q&A", 2),
                TocEntry("section-3", "Letters", 1),
            ]
        )

        assert len(toc) == 2
        section, children = toc[0]
        assert isinstance(section, epub.Section)
        assert (section.title, section.href) == ("Feature", "content.xhtml#section-0")
        assert [(link.title, link.href) for link in children] == [
            ("Interview", "content.xhtml#section-1"),
            ("Q&A", "content.xhtml#section-2"),
        ]
        assert isinstance(toc[1], epub.Link)
        assert toc[1].href == "content.xhtml#section-3"

    def test_leading_level_two_stays_top_level(self):
        toc = build_toc(
            [TocEntry("section-0", "Editor's Note", 2), TocEntry("section-1", "Feature", 1)]
        )

        assert [link.title for link in toc] == ["Editor's Note", "Feature"]
        assert all(isinstance(link, epub.Link) for link in toc)

    def test_empty_falls_back_to_start_link(self):
        toc = build_toc([])

        assert len(toc) == 1
        assert (toc[0].title, toc[0].href) == ("Begin Reading", "content.xhtml")

    def test_depth(self):
        flat = build_toc([TocEntry("section-0", "Feature", 1)])
        nested = build_toc([TocEntry("section-0", "Feature", 1), TocEntry("section-1", "Q", 2)])

        assert toc_depth(flat) == 1
        assert toc_depth(build_toc([])) == 1
        assert toc_depth(nested) == 2


class TestPackageAssembler:
    """Tests for PackageAssembler.build."""

    def test_mimetype_first_and_stored(self, package):
        with open_zip(package.data) as zf:
            first = zf.infolist()[0]
            assert first.filename == "mimetype"
            assert first.compress_type == zipfile.ZIP_STORED
            assert zf.read("mimetype") == b"application/epub+zip"

    def test_archive_layout(self, package):
        with open_zip(package.data) as zf:
            names = set(zf.namelist())

        assert {
            "META-INF/container.xml",
            "EPUB/content.opf",
            "EPUB/toc.ncx",
            "EPUB/nav.xhtml",
            "EPUB/styles.css",
            "EPUB/cover.xhtml",
            "EPUB/content.xhtml",
            "EPUB/images/image_p1_i1.jpg",
            "EPUB/images/image_p2_i1.jpg",
            "EPUB/images/image_p3_i1.jpg",
            "EPUB/images/image_p3_i2.jpg",
        } <= names

    def test_image_bytes_packaged(self, package):
        with open_zip(package.data) as zf:
            assert zf.read("EPUB/images/image_p2_i1.jpg") == b"img-2-1"
            assert zf.read("EPUB/images/image_p1_i1.jpg") == b"cover"

    def test_cover_manifest_and_spine(self, package):
        assert package.has_cover
        assert package.spine == ["cover", "nav", "content"]
        by_href = {item.href: item for item in package.manifest}
        assert by_href["images/image_p1_i1.jpg"].properties == "cover-image"
        assert by_href["images/image_p3_i2.jpg"].id == "image_p3_i2_jpg"
        assert by_href["nav.xhtml"].properties == "nav"

        with open_zip(package.data) as zf:
            opf = zf.read("EPUB/content.opf").decode()
        assert "Spring &amp; Summer" in opf
        assert "urn:uuid:1234-abcd" in opf
        assert "MagToEpub AI" in opf
        assert 'name="cover"' in opf
        assert 'properties="cover-image"' in opf
        assert opf.index('idref="cover"') < opf.index('idref="nav"') < opf.index(
            'idref="content"'
        )

    def test_without_cover(self):
        images = [ExtractedImage(page=2, index=1, data=b"x")]

        package = PackageAssembler().build("Issue", MARKDOWN, images)

        assert not package.has_cover
        assert package.spine == ["nav", "content"]
        with open_zip(package.data) as zf:
            names = zf.namelist()
            opf = zf.read("EPUB/content.opf").decode()
        assert "EPUB/cover.xhtml" not in names
        assert "cover-image" not in opf

    def test_toc_documents(self, package):
        assert [(e.anchor_id, e.text, e.level) for e in package.toc] == [
            ("section-0", "Spring Feature", 1),
            ("section-1", "Interview", 2),
        ]
        with open_zip(package.data) as zf:
            nav = zf.read("EPUB/nav.xhtml").decode()
            ncx = zf.read("EPUB/toc.ncx").decode()
            content = zf.read("EPUB/content.xhtml").decode()

        assert 'href="content.xhtml#section-0"' in nav
        assert nav.index("content.xhtml#section-0") < nav.index("content.xhtml#section-1")
        assert 'src="content.xhtml#section-1"' in ncx
        assert '<h1 id="section-0">Spring Feature</h1>' in content
        assert '<h2 id="section-1">Interview</h2>' in content
        assert 'src="images/image_p2_i1.jpg"' in content
        assert 'href="styles.css"' in content

    def test_ncx_declares_depth(self, package):
        with open_zip(package.data) as zf:
            ncx = etree.fromstring(zf.read("EPUB/toc.ncx"))

        depth = [
            meta.get("content")
            for meta in ncx.iter("{http://www.daisy.org/z3986/2005/ncx/}meta")
            if meta.get("name") == "dtb:depth"
        ]
        assert depth == ["2"]

    def test_markup_escaped_in_content_document(self, sample_images):
        markdown = '![A "q" & <x>](image_p2_i1.jpg)\n\n[Subscribe](http://a.com/?a=1&b=2)'

        package = PackageAssembler().build("Issue", markdown, sample_images)

        with open_zip(package.data) as zf:
            content = zf.read("EPUB/content.xhtml").decode()
        assert 'alt="A &quot;q&quot; &amp; &lt;x&gt;"' in content
        assert 'href="http://a.com/?a=1&amp;b=2"' in content
        assert 'src="images/image_p2_i1.jpg"' in content

    def test_empty_toc_fallback(self, sample_images):
        package = PackageAssembler().build("Issue", "No headings here.", sample_images)

        assert package.toc == []
        with open_zip(package.data) as zf:
            nav = zf.read("EPUB/nav.xhtml").decode()
            ncx = zf.read("EPUB/toc.ncx").decode()
        assert "Begin Reading" in nav
        assert "Begin Reading" in ncx

    def test_write(self, package, tmp_path):
        path = package.write(tmp_path / "books" / "issue.epub")

        assert path.read_bytes() == package.data


class TestValidatePackage:
    MANIFEST = [ManifestItem("content", "content.xhtml", "application/xhtml+xml")]
    BASE = [
        ("mimetype", b"application/epub+zip", zipfile.ZIP_STORED),
        ("META-INF/container.xml", b"<container/>", zipfile.ZIP_DEFLATED),
        ("EPUB/content.opf", b"<package/>", zipfile.ZIP_DEFLATED),
        ("EPUB/content.xhtml", b"<html/>", zipfile.ZIP_DEFLATED),
    ]

    def test_valid(self):
        validate_package(build_zip(self.BASE), self.MANIFEST, ["content"])

    def test_mimetype_not_first(self):
        data = build_zip(self.BASE[1:] + self.BASE[:1])

        with pytest.raises(PackagingError, match="mimetype"):
            validate_package(data, self.MANIFEST, ["content"])

    def test_mimetype_compressed(self):
        entries = [("mimetype", b"application/epub+zip", zipfile.ZIP_DEFLATED), *self.BASE[1:]]

        with pytest.raises(PackagingError, match="mimetype"):
            validate_package(build_zip(entries), self.MANIFEST, ["content"])

    def test_missing_container(self):
        entries = [entry for entry in self.BASE if not entry[0].startswith("META-INF")]

        with pytest.raises(PackagingError, match="container.xml"):
            validate_package(build_zip(entries), self.MANIFEST, ["content"])

    def test_manifest_without_file(self):
        manifest = [*self.MANIFEST, ManifestItem("ghost", "images/ghost.jpg", "image/jpeg")]

        with pytest.raises(PackagingError, match="images/ghost.jpg"):
            validate_package(build_zip(self.BASE), manifest, ["content"])

    def test_duplicate_ids(self):
        manifest = self.MANIFEST * 2

        with pytest.raises(PackagingError, match="Duplicate"):
            validate_package(build_zip(self.BASE), manifest, ["content"])

    def test_unknown_spine_id(self):
        with pytest.raises(PackagingError, match="cover"):
            validate_package(build_zip(self.BASE), self.MANIFEST, ["cover", "content"])
