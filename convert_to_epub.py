import logging
import os
import shutil
import stat
import tempfile
import uuid  # used to generate a unique identifier
import zipfile
import xml.etree.ElementTree as ET
from datetime import datetime, timezone

from book_metadata import BookMetadata, MetadataFields, resolve_metadata
from epub_errors import FilesystemFailure
from image_pages import (
    COVER_IMAGE_NAME,
    IMAGE_MEDIA_TYPE,
    blank_page,
    canvas_size,
    collect_images,
    normalize_pages,
)

logger = logging.getLogger(__name__)

MIMETYPE = "application/epub+zip"
PACKAGE_PATH = "OEBPS/content.opf"
STYLESHEET_NAME = "reset.css"

XML_DECLARATION = '<?xml version="1.0" encoding="UTF-8"?>\n'
XHTML_DOCTYPE = "<!DOCTYPE html>\n"

OPF_NS = "http://www.idpf.org/2007/opf"
DC_NS = "http://purl.org/dc/elements/1.1/"
XHTML_NS = "http://www.w3.org/1999/xhtml"
OPS_NS = "http://www.idpf.org/2007/ops"

CONTAINER_XML = f"""{XML_DECLARATION}<container version="1.0" xmlns="urn:oasis:names:tc:opendocument:xmlns:container">
    <rootfiles>
        <rootfile full-path="{PACKAGE_PATH}" media-type="application/oebps-package+xml"/>
    </rootfiles>
</container>
"""

RESET_CSS = """html {color: #000; background: #FFF;}
body,div,dl,dt,dd,ul,ol,li,h1,h2,h3,h4,h5,h6,th,td {margin: 0; padding: 0;}
table {border-collapse: collapse; border-spacing: 0;}
fieldset,img {border: 0;}
caption,th,var {font-style: normal; font-weight: normal;}
li {list-style: none;}
caption,th {text-align: left;}
h1,h2,h3,h4,h5,h6 {font-size: 100%; font-weight: normal;}
sup {vertical-align: text-top;}
sub {vertical-align: text-bottom;}
a.app-amzn-magnify {display: block; width: 100%; height: 100%;}
"""

COVER_BODY_STYLE = "font-size: 16px; height: 100%; text-align: center; width: 100%"

# Fixed zip entry date so identical inputs give identical archives
ZIP_DATE_TIME = (1980, 1, 1, 0, 0, 0)


# --- Working directory ---

def create_work_dir(work_root=None):
    """
    Create a new, uniquely named working directory and return its path.

    Each conversion gets its own directory, so several conversions can run
    at the same time. work_root defaults to the system temp directory.
    """
    try:
        work_dir = tempfile.mkdtemp(prefix="img2epub-", dir=work_root)
    except OSError as e:
        raise FilesystemFailure(work_root or tempfile.gettempdir(), str(e)) from e
    logger.debug("Working folder created: %s", work_dir)
    return work_dir


def remove_work_dir(work_dir):
    """Delete the working directory. Failures are logged, not raised."""
    try:
        shutil.rmtree(work_dir)
        logger.info("Temporary folder removed: %s", work_dir)
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning("Could not remove temp folder %s: %s", work_dir, e)


def _write_text(path, content):
    try:
        with open(path, "w", encoding="utf-8", newline="\n") as f:
            f.write(content)
    except OSError as e:
        raise FilesystemFailure(path, str(e)) from e


def initial_setup(work_dir):
    """
    Create the following structure:

    work_dir/
        mimetype
        META-INF/
            container.xml
        OEBPS/
            images/

    mimetype and container.xml are identical for every book.
    """
    meta_inf = os.path.join(work_dir, "META-INF")
    images = os.path.join(work_dir, "OEBPS", "images")

    for folder in (meta_inf, images):
        try:
            os.makedirs(folder, exist_ok=True)
        except OSError as e:
            raise FilesystemFailure(folder, str(e)) from e

    # No trailing newline in mimetype
    _write_text(os.path.join(work_dir, "mimetype"), MIMETYPE)
    _write_text(os.path.join(meta_inf, "container.xml"), CONTAINER_XML)

    logger.debug("EPUB skeleton created in: %s", work_dir)


# --- XML building ---

def create(tag, attributes=None, content=None):
    """Create an element with optional attributes and text content."""
    element = ET.Element(tag)
    if attributes:
        for name, value in attributes.items():
            element.set(name, str(value))
    if content:
        element.text = content
    return element


def append_to(parent, tag, attributes=None, content=None):
    """Create an element and append it to parent."""
    element = create(tag, attributes, content)
    parent.append(element)
    return element


def serialize(root, doctype=False):
    """Return the document as indented UTF-8 XML text (escaping applied here)."""
    ET.indent(root, space="    ")
    header = XML_DECLARATION + (XHTML_DOCTYPE if doctype else "")
    return header + ET.tostring(root, encoding="unicode") + "\n"


def _xhtml_head(html, title, max_width, max_height):
    head = append_to(html, "head")
    append_to(head, "title", content=title)
    append_to(head, "meta", {
        "name": "viewport",
        "content": f"width={max_width}, height={max_height}",
    })
    return head


def _image_style(max_width, max_height):
    return f"height: {max_height}px; left: 0; position: absolute; top: 0; width: {max_width}px"


# --- Navigation document & stylesheet ---

def build_nav_xhtml(max_width, max_height):
    """Navigation document: a single hidden TOC entry pointing at the cover page."""
    html = create("html", {"xmlns": XHTML_NS, "xmlns:epub": OPS_NS})
    _xhtml_head(html, "nav", max_width, max_height)
    body = append_to(html, "body")
    nav = append_to(body, "nav", {"epub:type": "toc", "hidden": ""})
    append_to(nav, "h1", content="Table of contents")
    item = append_to(append_to(nav, "ol"), "li")
    append_to(item, "a", {"href": "part0.xhtml"}, "Cover")
    return html


def generate_nav_xhtml(work_dir, max_width, max_height):
    nav_path = os.path.join(work_dir, "OEBPS", "nav.xhtml")
    _write_text(nav_path, serialize(build_nav_xhtml(max_width, max_height), doctype=True))
    logger.info("nav.xhtml generated at: %s", nav_path)


def generate_style_css(work_dir):
    css_path = os.path.join(work_dir, "OEBPS", STYLESHEET_NAME)
    _write_text(css_path, RESET_CSS)
    logger.debug("%s generated at: %s", STYLESHEET_NAME, css_path)


# --- Package document ---

def spread_side(index, is_rtl):
    """
    Return the page-spread side for the index-th page after the cover.

    Left-to-right books start on the right and alternate; right-to-left
    books start on the left.
    """
    first, second = ("left", "right") if is_rtl else ("right", "left")
    return first if index % 2 == 0 else second


def new_book_id():
    return f"urn:uuid:{uuid.uuid4()}"


def modified_timestamp():
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def build_content_opf(
    pages,
    max_width,
    max_height,
    metadata: BookMetadata,
    book_id,
    modified,
):
    """
    Build the package document for pages (cover first).

    Manifest order:
        nav, part0 (cover page), cover image,
        then part<i> + image-<sequence_id> for every later page,
        then the stylesheet.

    Spine order:
        nav, part0 (no spread), then part<i> with alternating
        page-spread-right / page-spread-left (see spread_side()).

    dc:creator, dc:publisher and dc:date are only emitted when set.
    """
    package = create("package", {
        "xmlns": OPF_NS,
        "version": "3.0",
        "unique-identifier": "pub-id",
    })

    # --- Metadata ---
    md = append_to(package, "metadata", {"xmlns:opf": OPF_NS, "xmlns:dc": DC_NS})
    append_to(md, "dc:identifier", {"id": "pub-id"}, book_id)
    append_to(md, "dc:title", content=metadata.title)
    append_to(md, "dc:language", content=metadata.language)
    for name in ("creator", "publisher", "date"):
        value = getattr(metadata, name)
        if value:
            append_to(md, f"dc:{name}", content=value)
    append_to(md, "meta", {"property": "dcterms:modified"}, modified)
    append_to(md, "meta", {"property": "rendition:layout"}, "pre-paginated")
    append_to(md, "meta", {"name": "fixed-layout", "content": "true"})
    append_to(md, "meta", {"name": "book-type", "content": "comic"})
    append_to(md, "meta", {"property": "rendition:orientation"}, "auto")
    append_to(md, "meta", {"property": "rendition:spread"}, "landscape")
    append_to(md, "meta", {"name": "orientation-lock", "content": "auto"})
    append_to(md, "meta", {
        "name": "original-resolution",
        "content": f"{max_width}x{max_height}",
    })
    append_to(md, "meta", {"name": "cover", "content": "cover"})
    if metadata.is_rtl:
        append_to(md, "meta", {"name": "primary-writing-mode", "content": "horizontal-rl"})

    # --- Manifest ---
    manifest = append_to(package, "manifest")
    append_to(manifest, "item", {
        "id": "nav",
        "href": "nav.xhtml",
        "media-type": "application/xhtml+xml",
        "properties": "nav",
    })
    append_to(manifest, "item", {
        "id": "part0",
        "href": "part0.xhtml",
        "media-type": "application/xhtml+xml",
    })
    append_to(manifest, "item", {
        "id": "cover",
        "href": f"images/{COVER_IMAGE_NAME}",
        "media-type": IMAGE_MEDIA_TYPE,
        "properties": "cover-image",
    })
    for i, page in enumerate(pages[1:], start=1):
        append_to(manifest, "item", {
            "id": f"part{i}",
            "href": f"part{i}.xhtml",
            "media-type": "application/xhtml+xml",
        })
        append_to(manifest, "item", {
            "id": f"image-{page.sequence_id}",
            "href": page.href,
            "media-type": IMAGE_MEDIA_TYPE,
        })
    append_to(manifest, "item", {
        "id": STYLESHEET_NAME,
        "href": STYLESHEET_NAME,
        "media-type": "text/css",
    })

    # --- Spine ---
    spine_attributes = {"page-progression-direction": "rtl"} if metadata.is_rtl else None
    spine = append_to(package, "spine", spine_attributes)
    append_to(spine, "itemref", {"idref": "nav"})
    append_to(spine, "itemref", {"idref": "part0", "properties": "rendition:spread-none"})
    for index in range(len(pages) - 1):
        append_to(spine, "itemref", {
            "idref": f"part{index + 1}",
            "properties": f"page-spread-{spread_side(index, metadata.is_rtl)}",
        })

    guide = append_to(package, "guide")
    append_to(guide, "reference", {"type": "cover", "title": "Cover", "href": "part0.xhtml"})

    return package


def generate_content_opf(
    work_dir,
    pages,
    max_width,
    max_height,
    metadata: BookMetadata,
    book_id=None,
    modified=None,
):
    """Write OEBPS/content.opf. Returns the identifier used."""
    if book_id is None:
        book_id = new_book_id()
    if modified is None:
        modified = modified_timestamp()

    package = build_content_opf(pages, max_width, max_height, metadata, book_id, modified)
    opf_path = os.path.join(work_dir, PACKAGE_PATH)
    _write_text(opf_path, serialize(package))

    logger.info("content.opf generated at: %s", opf_path)
    logger.debug("BookID used: %s", book_id)
    return book_id


# --- Content pages ---

def build_page_xhtml(title, image_src, alt, max_width, max_height, is_cover=False):
    """One fixed-layout page showing a single full-canvas image."""
    html = create("html", {"xmlns": XHTML_NS})
    head = _xhtml_head(html, title, max_width, max_height)
    append_to(head, "link", {"rel": "stylesheet", "type": "text/css", "href": STYLESHEET_NAME})
    body = append_to(html, "body", {"style": COVER_BODY_STYLE} if is_cover else None)
    append_to(body, "img", {
        "src": image_src,
        "alt": alt,
        "style": _image_style(max_width, max_height),
    })
    return html


def generate_xhtml_pages(work_dir, pages, max_width, max_height, title):
    """
    Write OEBPS/part<i>.xhtml for every page.

    part0 is the cover page and shows images/cover.webp; the other pages
    show their own padded image.
    """
    oebps_dir = os.path.join(work_dir, "OEBPS")

    for i, page in enumerate(pages):
        if i == 0:
            html = build_page_xhtml(
                title, f"images/{COVER_IMAGE_NAME}", COVER_IMAGE_NAME,
                max_width, max_height, is_cover=True,
            )
        else:
            html = build_page_xhtml(
                title, page.href, page.sequence_id, max_width, max_height,
            )

        xhtml_path = os.path.join(oebps_dir, f"part{i}.xhtml")
        _write_text(xhtml_path, serialize(html, doctype=True))
        logger.debug("Created XHTML page: %s", xhtml_path)

    logger.info("Created %d XHTML page(s)", len(pages))


# --- Archive ---

def _zip_info(arcname, compress_type):
    info = zipfile.ZipInfo(arcname, date_time=ZIP_DATE_TIME)
    info.compress_type = compress_type
    info.external_attr = 0o644 << 16
    return info


def _archive_members(work_dir):
    """Yield (full_path, arcname) for every file except mimetype and dotfiles."""
    for root, dirs, files in os.walk(work_dir):
        dirs[:] = sorted(d for d in dirs if not d.startswith("."))
        for filename in sorted(files):
            if filename.startswith("."):
                continue
            full_path = os.path.join(root, filename)
            rel_path = os.path.relpath(full_path, work_dir).replace(os.sep, "/")
            if rel_path == "mimetype":
                continue
            yield full_path, rel_path


def create_epub_from_temp(work_dir, epub_path):
    """
    Zip the content of work_dir into epub_path.

    EPUB rules:
        * the 'mimetype' file must be the FIRST entry in the ZIP
          and must be stored without compression (ZIP_STORED).
        * all other files are compressed (ZIP_DEFLATED).

    The archive is written next to epub_path first and then moved over it,
    so a failed run never leaves a partial file at epub_path.
    """
    mimetype_path = os.path.join(work_dir, "mimetype")
    out_dir = os.path.dirname(os.path.abspath(epub_path))

    try:
        fd, tmp_path = tempfile.mkstemp(prefix=".img2epub-", suffix=".part", dir=out_dir)
    except OSError as e:
        raise FilesystemFailure(epub_path, str(e)) from e
    os.close(fd)

    try:
        with zipfile.ZipFile(tmp_path, "w") as zf:
            # 1) 'mimetype' first, uncompressed
            with open(mimetype_path, "rb") as f:
                zf.writestr(_zip_info("mimetype", zipfile.ZIP_STORED), f.read())

            # 2) everything else
            for full_path, arcname in _archive_members(work_dir):
                with open(full_path, "rb") as f:
                    zf.writestr(
                        _zip_info(arcname, zipfile.ZIP_DEFLATED), f.read(), compresslevel=9,
                    )

        os.chmod(tmp_path, _archive_mode(epub_path))
        os.replace(tmp_path, epub_path)
    except OSError as e:
        _discard(tmp_path)
        raise FilesystemFailure(epub_path, str(e)) from e
    except Exception:
        _discard(tmp_path)
        raise

    logger.info("EPUB created: %s", epub_path)
    return epub_path


def _archive_mode(epub_path):
    """
    Permission bits for the finished archive: those of the file being
    replaced, or the usual umask-based mode of a new file.
    """
    try:
        return stat.S_IMODE(os.stat(epub_path).st_mode)
    except FileNotFoundError:
        umask = os.umask(0)
        os.umask(umask)
        return 0o666 & ~umask


def _discard(path):
    try:
        os.remove(path)
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning("Could not remove partial archive %s: %s", path, e)


# --- Pipeline ---

def build_package(work_dir, pages, max_width, max_height, metadata: BookMetadata, book_id=None):
    """Write the stylesheet, navigation document, package document and pages."""
    generate_style_css(work_dir)
    generate_nav_xhtml(work_dir, max_width, max_height)
    book_id = generate_content_opf(work_dir, pages, max_width, max_height, metadata, book_id)
    generate_xhtml_pages(work_dir, pages, max_width, max_height, metadata.title)
    return book_id


def convert(
    source_folder,
    epub_path,
    overrides: MetadataFields | None = None,
    work_root=None,
    workers=1,
):
    """
    Convert a folder of numbered images into a fixed-layout EPUB.

    Steps:
      1) Resolve metadata (metadata.json + overrides).
      2) Create a private working folder with the EPUB skeleton.
      3) Collect and order the page images.
      4) Pad every page to the common canvas (plus the optional blank page).
      5) Generate nav.xhtml, content.opf and the XHTML pages.
      6) Zip everything into epub_path.

    The working folder is removed whether the conversion succeeds or not.
    """
    metadata = resolve_metadata(source_folder, overrides)
    logger.info("Title: %s", metadata.title)
    logger.info("Reading direction: %s", "rtl" if metadata.is_rtl else "ltr")

    work_dir = create_work_dir(work_root)
    try:
        initial_setup(work_dir)

        pages = collect_images(source_folder)
        max_width, max_height = canvas_size(pages)
        logger.info("Canvas size: %dx%d", max_width, max_height)

        if metadata.blank:
            pages.insert(1, blank_page())

        images_dir = os.path.join(work_dir, "OEBPS", "images")
        pages = normalize_pages(pages, max_width, max_height, images_dir, workers=workers)

        build_package(work_dir, pages, max_width, max_height, metadata)
        create_epub_from_temp(work_dir, epub_path)
    finally:
        remove_work_dir(work_dir)

    return epub_path
