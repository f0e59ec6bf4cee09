"""
Book metadata: loading, merging and reading back.

The metadata of a book comes from two optional sources:

    1. metadata.json inside the image folder
    2. explicit overrides (command line, API call, ...)

Both are represented as MetadataFields, a record where every field is
optional. merge_metadata() combines them field by field (overrides win) and
resolve_metadata() turns the result into a BookMetadata, which always has a
title.

read_epub_metadata() is the read path: it extracts the same vocabulary back
out of a finished EPUB file.
"""
import json
import logging
import os
import re
import zipfile
from dataclasses import dataclass, fields, replace

from ebooklib import epub  # pip install EbookLib
from lxml import etree

from epub_errors import FilesystemFailure, InvalidMetadata, MissingTitle

logger = logging.getLogger(__name__)

METADATA_FILENAME = "metadata.json"
DEFAULT_LANGUAGE = "ja-JP"


@dataclass(frozen=True)
class MetadataFields:
    """Partial metadata: any field may be missing (None)."""

    title: str | None = None
    creator: str | None = None
    publisher: str | None = None
    date: str | None = None
    language: str | None = None
    is_rtl: bool | None = None
    blank: bool | None = None


@dataclass(frozen=True)
class BookMetadata:
    """Resolved metadata consumed by the package builder."""

    title: str
    creator: str | None = None
    publisher: str | None = None
    date: str | None = None
    language: str = DEFAULT_LANGUAGE
    is_rtl: bool = False
    blank: bool = False


# JSON key -> expected Python type
_FIELD_TYPES = {
    "title": str,
    "creator": str,
    "publisher": str,
    "date": str,
    "language": str,
    "is_rtl": bool,
    "blank": bool,
}

# Characters a well-formed XML 1.0 document cannot contain
_XML_INVALID_CHARS = re.compile(r"[^\t\n\r\x20-\ud7ff\ue000-\ufffd\U00010000-\U0010ffff]")


def merge_metadata(base: MetadataFields, overrides: MetadataFields) -> MetadataFields:
    """Return base with every field that is set in overrides replaced."""
    changes = {
        f.name: getattr(overrides, f.name)
        for f in fields(MetadataFields)
        if getattr(overrides, f.name) is not None
    }
    return replace(base, **changes)


def parse_metadata(data, path="<metadata>") -> MetadataFields:
    """
    Validate a decoded metadata.json document.

    - the document must be a JSON object
    - known keys must have the expected type (null counts as missing)
    - unknown keys are ignored
    """
    if not isinstance(data, dict):
        raise InvalidMetadata(path, "top-level value must be an object")

    values = {}
    for key, expected in _FIELD_TYPES.items():
        value = data.get(key)
        if value is None:
            continue
        if not isinstance(value, expected):
            raise InvalidMetadata(
                path, f"'{key}' must be a {expected.__name__}, got {type(value).__name__}"
            )
        values[key] = value

    return check_xml_text(MetadataFields(**values), path)


def check_xml_text(values: MetadataFields, source) -> MetadataFields:
    """Reject text fields holding characters that cannot be written to XML."""
    for f in fields(MetadataFields):
        value = getattr(values, f.name)
        if isinstance(value, str):
            match = _XML_INVALID_CHARS.search(value)
            if match:
                raise InvalidMetadata(
                    source, f"'{f.name}' contains a character not allowed in XML: {match.group()!r}"
                )
    return values


def load_metadata_file(source_folder) -> MetadataFields:
    """
    Load source_folder/metadata.json.

    A missing file is not an error and gives an empty MetadataFields.
    """
    path = os.path.join(source_folder, METADATA_FILENAME)
    if not os.path.isfile(path):
        logger.debug("No %s in %s", METADATA_FILENAME, source_folder)
        return MetadataFields()

    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise InvalidMetadata(path, str(e)) from e
    except UnicodeDecodeError as e:
        raise InvalidMetadata(path, f"not UTF-8 text ({e.reason})") from e
    except OSError as e:
        raise FilesystemFailure(path, str(e)) from e

    logger.info("Metadata loaded: %s", path)
    return parse_metadata(data, path)


def resolve_metadata(source_folder, overrides: MetadataFields | None = None) -> BookMetadata:
    """Merge metadata.json with the overrides and require a title."""
    merged = load_metadata_file(source_folder)
    if overrides is not None:
        check_xml_text(overrides, "<overrides>")
        merged = merge_metadata(merged, overrides)

    if not merged.title:
        raise MissingTitle()

    return BookMetadata(
        title=merged.title,
        creator=merged.creator,
        publisher=merged.publisher,
        date=merged.date,
        language=merged.language or DEFAULT_LANGUAGE,
        is_rtl=bool(merged.is_rtl),
        blank=bool(merged.blank),
    )


# --- Read path ---

def _dc_value(book, name):
    """First value of the Dublin Core element name, or None."""
    values = book.get_metadata("DC", name)
    if not values:
        return None
    value = values[0][0] if isinstance(values[0], tuple) else values[0]
    return value or None


def read_epub_metadata(epub_path) -> BookMetadata:
    """
    Extract title, creator, publisher, date, language and reading direction
    from a finished EPUB.

    Optional fields that the package document does not carry come back as
    None. The reading direction is taken from the spine's
    page-progression-direction attribute.
    """
    try:
        book = epub.read_epub(epub_path, {"ignore_ncx": True})
    except (epub.EpubException, zipfile.BadZipFile) as e:
        raise InvalidMetadata(epub_path, f"not a readable EPUB ({e})") from e
    except KeyError as e:
        raise InvalidMetadata(epub_path, f"missing archive member {e}") from e
    except etree.XMLSyntaxError as e:
        raise InvalidMetadata(epub_path, str(e)) from e
    except OSError as e:
        raise FilesystemFailure(epub_path, str(e)) from e

    title = _dc_value(book, "title")
    if not title:
        raise MissingTitle()

    return BookMetadata(
        title=title,
        creator=_dc_value(book, "creator"),
        publisher=_dc_value(book, "publisher"),
        date=_dc_value(book, "date"),
        language=_dc_value(book, "language") or DEFAULT_LANGUAGE,
        is_rtl=book.direction == "rtl",
    )
