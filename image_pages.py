"""
Page images: collecting the source files and padding them to a common canvas.

Source images are recognized by name: an image extension (jpg, jpeg, png,
webp, any case) preceded by a run of decimal digits, e.g. "page012.png" or
"0001.JPG". The digit run is the page number. Pages are sorted by that
number, never by the order the file system returns them in.
"""
import logging
import os
import re
import shutil
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, replace

from PIL import Image  # pip install pillow

from epub_errors import (
    FilesystemFailure,
    ImageDecodeFailure,
    InvalidPageName,
    NoImagesFound,
)

logger = logging.getLogger(__name__)

SEQUENCE_WIDTH = 6
SUPPORTED_EXTENSIONS = (".jpg", ".jpeg", ".png", ".webp")

# Output codec for every page (lossless)
IMAGE_FORMAT = "WEBP"
IMAGE_EXTENSION = ".webp"
IMAGE_MEDIA_TYPE = "image/webp"

COVER_IMAGE_NAME = f"cover{IMAGE_EXTENSION}"
BLANK_SEQUENCE_ID = "blank"
WHITE = (255, 255, 255)

# Errors Pillow raises for files it cannot (or refuses to) decode
_DECODE_ERRORS = (OSError, ValueError, Image.DecompressionBombError)

# <anything ending in a non-digit, or nothing><digits>.<extension>
_PAGE_NAME = re.compile(r"^(?:\D*|.*\D)(\d+)\.(?:jpe?g|png|webp)$", re.IGNORECASE)


@dataclass(frozen=True)
class PageImage:
    """One page of the book and the image it is made from."""

    source_path: str | None  # None for the synthetic blank page
    sequence_id: str
    width: int
    height: int

    @property
    def file_name(self) -> str:
        return f"{self.sequence_id}{IMAGE_EXTENSION}"

    @property
    def href(self) -> str:
        """Path of the page image relative to OEBPS/."""
        return f"images/{self.file_name}"

    @property
    def is_blank(self) -> bool:
        return self.source_path is None


def blank_page() -> PageImage:
    """Return the synthetic all-white page (a zero-size original)."""
    return PageImage(source_path=None, sequence_id=BLANK_SEQUENCE_ID, width=0, height=0)


def page_number(filename):
    """
    Return the page number encoded in filename, or None if the name is not
    a page image.

    Raises InvalidPageName when the digit run is longer than SEQUENCE_WIDTH,
    since such a number cannot be written as a sequence id.
    """
    match = _PAGE_NAME.match(filename)
    if match is None:
        return None
    digits = match.group(1)
    if len(digits) > SEQUENCE_WIDTH:
        raise InvalidPageName(
            filename, f"page number has more than {SEQUENCE_WIDTH} digits"
        )
    return int(digits)


def _list_files(directory):
    """Yield every non-hidden file under directory, in a stable order."""
    for root, dirs, files in os.walk(directory):
        dirs[:] = sorted(d for d in dirs if not d.startswith("."))
        for filename in sorted(files):
            if filename.startswith("."):
                continue
            yield os.path.join(root, filename)


def probe_size(path):
    """Return (width, height) reading only the image header."""
    try:
        with Image.open(path) as img:
            return img.size
    except _DECODE_ERRORS as e:
        raise ImageDecodeFailure(path, str(e)) from e


def collect_images(directory) -> list[PageImage]:
    """
    Scan directory recursively and return its page images in page order.

    - files without a trailing page number are ignored
    - two files with the same page number raise InvalidPageName
    - an unreadable image raises ImageDecodeFailure (no partial books)
    - no page image at all raises NoImagesFound
    """
    if not os.path.isdir(directory):
        raise NoImagesFound(directory)

    numbered = []
    for path in _list_files(directory):
        try:
            number = page_number(os.path.basename(path))
        except InvalidPageName as e:
            raise InvalidPageName(path, e.reason) from e
        if number is None:
            logger.debug("Skipping non-page file: %s", path)
            continue
        numbered.append((number, path))

    if not numbered:
        raise NoImagesFound(directory)

    numbered.sort(key=lambda item: item[0])

    for (prev_number, prev_path), (number, path) in zip(numbered, numbered[1:]):
        if number == prev_number:
            raise InvalidPageName(
                path, f"page number {number} is already used by {prev_path}"
            )

    pages = []
    for number, path in numbered:
        logger.info("Reading image: %s", path)
        width, height = probe_size(path)
        pages.append(PageImage(
            source_path=path,
            sequence_id=f"{number:0{SEQUENCE_WIDTH}d}",
            width=width,
            height=height,
        ))
    return pages


def canvas_size(pages):
    """Return (max_width, max_height) over pages, which must not be empty."""
    if not pages:
        raise ValueError("canvas size of an empty page list")
    return max(p.width for p in pages), max(p.height for p in pages)


def centered_padding(width, height, max_width, max_height):
    """
    Return (left, top, right, bottom) padding that centers a width x height
    image on a max_width x max_height canvas. Odd remainders go to the
    right/bottom side.
    """
    width_diff = max_width - width
    height_diff = max_height - height
    if width_diff < 0 or height_diff < 0:
        raise ValueError(
            f"image {width}x{height} does not fit canvas {max_width}x{max_height}"
        )
    return (
        width_diff // 2,
        height_diff // 2,
        width_diff - width_diff // 2,
        height_diff - height_diff // 2,
    )


def pad_image(page: PageImage, max_width, max_height, out_path) -> PageImage:
    """
    Write page centered on a white max_width x max_height canvas to out_path.

    The original pixels are copied as-is (no scaling); alpha is dropped.
    Returns the page with its size updated to the canvas size.
    """
    left, top, _, _ = centered_padding(page.width, page.height, max_width, max_height)
    canvas = Image.new("RGB", (max_width, max_height), WHITE)

    if not page.is_blank:
        try:
            with Image.open(page.source_path) as img:
                canvas.paste(img.convert("RGB"), (left, top))
        except _DECODE_ERRORS as e:
            raise ImageDecodeFailure(page.source_path, str(e)) from e

    try:
        canvas.save(out_path, IMAGE_FORMAT, lossless=True)
    except OSError as e:
        raise FilesystemFailure(out_path, str(e)) from e

    logger.debug(
        "Padded %s -> %s (offset %d,%d)", page.source_path or "blank page", out_path, left, top
    )
    return replace(page, width=max_width, height=max_height)


def normalize_pages(pages, max_width, max_height, images_dir, workers=1) -> list[PageImage]:
    """
    Pad every page into images_dir/<sequence_id>.webp and copy the first
    one to images_dir/cover.webp.

    Each page is written to its own file, so pages can be processed by
    several worker threads without locking. Page order is preserved.
    """
    def pad(page):
        return pad_image(page, max_width, max_height, os.path.join(images_dir, page.file_name))

    if workers > 1:
        with ThreadPoolExecutor(max_workers=workers) as pool:
            padded = list(pool.map(pad, pages))
    else:
        padded = [pad(page) for page in pages]

    cover_src = os.path.join(images_dir, padded[0].file_name)
    cover_path = os.path.join(images_dir, COVER_IMAGE_NAME)
    try:
        shutil.copyfile(cover_src, cover_path)
    except OSError as e:
        raise FilesystemFailure(cover_path, str(e)) from e

    logger.info("Padded %d image(s) to %dx%d", len(padded), max_width, max_height)
    return padded
