import os
import zipfile
import xml.etree.ElementTree as ET
from pathlib import Path

import pytest

from book_metadata import BookMetadata
from convert_to_epub import (
    CONTAINER_XML,
    MIMETYPE,
    build_content_opf,
    build_nav_xhtml,
    create_epub_from_temp,
    create_work_dir,
    generate_xhtml_pages,
    initial_setup,
    remove_work_dir,
    serialize,
    spread_side,
)
from image_pages import PageImage, blank_page

NS = {
    "opf": "http://www.idpf.org/2007/opf",
    "dc": "http://purl.org/dc/elements/1.1/",
    "x": "http://www.w3.org/1999/xhtml",
}


def _pages(count):
    return [PageImage(f"p{i}.png", f"{i:06d}", 150, 200) for i in range(1, count + 1)]


def _opf(pages, **metadata):
    metadata.setdefault("title", "Sample")
    package = build_content_opf(
        pages, 150, 200, BookMetadata(**metadata), "urn:uuid:test", "2026-01-01T00:00:00Z",
    )
    # Round trip through the serializer, as written to disk
    return ET.fromstring(serialize(package).encode("utf-8"))


def _spine_properties(package):
    return [
        (ref.get("idref"), ref.get("properties"))
        for ref in package.findall("opf:spine/opf:itemref", NS)
    ]


@pytest.mark.parametrize(
    "is_rtl, expected",
    [
        (False, ["right", "left", "right", "left", "right"]),
        (True, ["left", "right", "left", "right", "left"]),
    ],
)
def test_spread_side_alternates(is_rtl, expected):
    assert [spread_side(i, is_rtl) for i in range(5)] == expected


def test_initial_setup(tmp_path: Path):
    initial_setup(str(tmp_path))

    assert (tmp_path / "mimetype").read_text(encoding="utf-8") == MIMETYPE
    assert (tmp_path / "META-INF" / "container.xml").read_text(encoding="utf-8") == CONTAINER_XML
    assert (tmp_path / "OEBPS" / "images").is_dir()
    container = ET.fromstring((tmp_path / "META-INF" / "container.xml").read_bytes())
    rootfile = container.find(
        "{urn:oasis:names:tc:opendocument:xmlns:container}rootfiles/"
        "{urn:oasis:names:tc:opendocument:xmlns:container}rootfile"
    )
    assert rootfile.get("full-path") == "OEBPS/content.opf"


def test_manifest_order():
    package = _opf(_pages(3))

    items = [
        (item.get("id"), item.get("href"))
        for item in package.findall("opf:manifest/opf:item", NS)
    ]
    assert items == [
        ("nav", "nav.xhtml"),
        ("part0", "part0.xhtml"),
        ("cover", "images/cover.webp"),
        ("part1", "part1.xhtml"),
        ("image-000002", "images/000002.webp"),
        ("part2", "part2.xhtml"),
        ("image-000003", "images/000003.webp"),
        ("reset.css", "reset.css"),
    ]
    cover = package.find("opf:manifest/opf:item[@id='cover']", NS)
    assert cover.get("properties") == "cover-image"
    assert cover.get("media-type") == "image/webp"


def test_spine_ltr():
    package = _opf(_pages(4))

    assert package.find("opf:spine", NS).get("page-progression-direction") is None
    assert _spine_properties(package) == [
        ("nav", None),
        ("part0", "rendition:spread-none"),
        ("part1", "page-spread-right"),
        ("part2", "page-spread-left"),
        ("part3", "page-spread-right"),
    ]


def test_spine_rtl():
    package = _opf(_pages(3), is_rtl=True)

    assert package.find("opf:spine", NS).get("page-progression-direction") == "rtl"
    assert _spine_properties(package)[2:] == [
        ("part1", "page-spread-left"),
        ("part2", "page-spread-right"),
    ]
    writing_mode = package.find("opf:metadata/opf:meta[@name='primary-writing-mode']", NS)
    assert writing_mode.get("content") == "horizontal-rl"


def test_spine_with_blank_page_shifts_sides():
    pages = _pages(3)
    pages.insert(1, blank_page())

    package = _opf(pages)

    assert _spine_properties(package)[2:] == [
        ("part1", "page-spread-right"),
        ("part2", "page-spread-left"),
        ("part3", "page-spread-right"),
    ]
    hrefs = [item.get("href") for item in package.findall("opf:manifest/opf:item", NS)]
    assert "images/blank.webp" in hrefs


def test_spine_length_matches_pages():
    for count in (1, 2, 7):
        package = _opf(_pages(count))
        assert len(package.findall("opf:spine/opf:itemref", NS)) == count + 1


def test_optional_metadata_absent():
    package = _opf(_pages(1))

    md = package.find("opf:metadata", NS)
    assert md.find("dc:identifier", NS).text == "urn:uuid:test"
    assert md.find("dc:title", NS).text == "Sample"
    assert md.find("dc:language", NS).text == "ja-JP"
    for name in ("creator", "publisher", "date"):
        assert md.find(f"dc:{name}", NS) is None
    assert md.find("opf:meta[@name='primary-writing-mode']", NS) is None


def test_fixed_layout_metadata():
    package = _opf(_pages(1), creator="A", publisher="P", date="2021-07-04")

    md = package.find("opf:metadata", NS)
    properties = {m.get("property"): m.text for m in md.findall("opf:meta", NS) if m.get("property")}
    assert properties == {
        "dcterms:modified": "2026-01-01T00:00:00Z",
        "rendition:layout": "pre-paginated",
        "rendition:orientation": "auto",
        "rendition:spread": "landscape",
    }
    resolution = md.find("opf:meta[@name='original-resolution']", NS)
    assert resolution.get("content") == "150x200"
    assert md.find("dc:creator", NS).text == "A"
    assert md.find("dc:publisher", NS).text == "P"
    assert md.find("dc:date", NS).text == "2021-07-04"


def test_special_characters_are_escaped():
    title = 'Tom & Jerry <"vol. 1">'
    package = build_content_opf(
        _pages(1), 10, 10, BookMetadata(title=title, creator="A&B"), "urn:uuid:x", "now",
    )

    text = serialize(package)

    assert "Tom &amp; Jerry &lt;" in text
    assert ET.fromstring(text.encode("utf-8")).find("opf:metadata/dc:title", NS).text == title


def test_nav_points_at_cover_page():
    text = serialize(build_nav_xhtml(150, 200), doctype=True)

    assert text.startswith('<?xml version="1.0" encoding="UTF-8"?>\n<!DOCTYPE html>\n')
    html = ET.fromstring(text.encode("utf-8"))
    links = html.findall(".//x:nav/x:ol/x:li/x:a", NS)
    assert [a.get("href") for a in links] == ["part0.xhtml"]
    viewport = html.find("x:head/x:meta[@name='viewport']", NS)
    assert viewport.get("content") == "width=150, height=200"


def test_xhtml_pages(tmp_path: Path):
    pages = _pages(2)

    (tmp_path / "OEBPS").mkdir()
    generate_xhtml_pages(str(tmp_path), pages, 150, 200, "Sample")

    assert sorted(os.listdir(tmp_path / "OEBPS")) == ["part0.xhtml", "part1.xhtml"]

    cover = ET.parse(tmp_path / "OEBPS" / "part0.xhtml").getroot()
    assert cover.find("x:head/x:title", NS).text == "Sample"
    assert "text-align: center" in cover.find("x:body", NS).get("style")
    img = cover.find("x:body/x:img", NS)
    assert img.get("src") == "images/cover.webp"

    page = ET.parse(tmp_path / "OEBPS" / "part1.xhtml").getroot()
    assert page.find("x:body", NS).get("style") is None
    img = page.find("x:body/x:img", NS)
    assert img.get("src") == "images/000002.webp"
    assert img.get("style") == "height: 200px; left: 0; position: absolute; top: 0; width: 150px"
    link = page.find("x:head/x:link", NS)
    assert link.get("href") == "reset.css"


def test_archive_skips_dotfiles(tmp_path: Path):
    work_dir = tmp_path / "work"
    initial_setup(str(work_dir))
    (work_dir / "OEBPS" / "content.opf").write_text("<package/>", encoding="utf-8")
    (work_dir / ".DS_Store").write_bytes(b"\x00\x00\x00\x01Bud1")
    (work_dir / "OEBPS" / "images" / ".DS_Store").write_bytes(b"\x00\x00\x00\x01Bud1")
    out = tmp_path / "book.epub"

    create_epub_from_temp(str(work_dir), str(out))

    with zipfile.ZipFile(out) as zf:
        names = zf.namelist()
    assert names[0] == "mimetype"
    assert "OEBPS/content.opf" in names
    assert not [n for n in names if os.path.basename(n).startswith(".")]


def test_work_dirs_are_distinct(tmp_path: Path):
    first = create_work_dir(str(tmp_path))
    second = create_work_dir(str(tmp_path))
    assert first != second
    assert os.path.isdir(first) and os.path.isdir(second)

    remove_work_dir(first)

    assert not os.path.exists(first)
    assert os.path.isdir(second)
