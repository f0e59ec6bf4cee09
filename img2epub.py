"""
Command-line front ends.

    img2epub DIRECTORY [OUTPUT] [options]
        Convert a folder of numbered images into a fixed-layout EPUB.

    epub-metadata EPUB
        Print the metadata stored in an EPUB.
"""
import argparse
import logging
import os
import sys

from book_metadata import MetadataFields, read_epub_metadata
from convert_to_epub import convert
from epub_errors import EpubBuildError

__version__ = "0.1.0"

logger = logging.getLogger("img2epub")


def _setup_logging(verbose=False, quiet=False):
    if verbose:
        level = logging.DEBUG
    elif quiet:
        level = logging.WARNING
    else:
        level = logging.INFO
    logging.basicConfig(level=level, format="%(message)s", stream=sys.stderr)


def build_parser():
    parser = argparse.ArgumentParser(
        prog="img2epub",
        description="Convert a folder of numbered images into a fixed-layout EPUB.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("directory", help="folder containing the page images")
    parser.add_argument(
        "output", nargs="?",
        help="output EPUB path (default: <directory>.epub)",
    )
    parser.add_argument(
        "-t", "--title",
        help="title of the book (default: 'title' from metadata.json)",
    )
    parser.add_argument(
        "-c", "--creator",
        help="author of the book (default: 'creator' from metadata.json)",
    )
    parser.add_argument(
        "-p", "--publisher",
        help="publisher of the book (default: 'publisher' from metadata.json)",
    )
    parser.add_argument(
        "--date",
        help="publication date, ISO 8601 (e.g. 2021-07-04T12:34:56Z)",
    )
    parser.add_argument(
        "--language",
        help="language tag of the book (default: metadata.json, then ja-JP)",
    )
    parser.add_argument(
        "-d", "--direction", choices=("ltr", "rtl"), type=str.lower,
        help="reading direction (default: 'is_rtl' from metadata.json, then ltr)",
    )
    parser.add_argument(
        "-b", "--blank", action="store_true",
        help="insert a blank page right after the cover",
    )
    parser.add_argument(
        "--workers", type=int, default=1,
        help="number of threads used to pad the images (default: 1)",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="show debug output")
    parser.add_argument("-q", "--quiet", action="store_true", help="only show warnings and errors")
    return parser


def overrides_from_args(args) -> MetadataFields:
    """Turn the command-line options into metadata overrides (unset -> None)."""
    return MetadataFields(
        title=args.title,
        creator=args.creator,
        publisher=args.publisher,
        date=args.date,
        language=args.language,
        is_rtl=None if args.direction is None else args.direction == "rtl",
        blank=True if args.blank else None,
    )


def default_output(directory):
    return os.path.normpath(directory) + ".epub"


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.workers < 1:
        parser.error("--workers must be at least 1")

    _setup_logging(args.verbose, args.quiet)
    output = args.output or default_output(args.directory)

    try:
        convert(
            args.directory,
            output,
            overrides=overrides_from_args(args),
            workers=args.workers,
        )
    except EpubBuildError as e:
        logger.error("Error: %s", e)
        return 1
    return 0


def metadata_main(argv=None):
    parser = argparse.ArgumentParser(
        prog="epub-metadata",
        description="Print the metadata of an EPUB file.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("epub", help="EPUB file path")
    args = parser.parse_args(argv)
    _setup_logging()

    try:
        metadata = read_epub_metadata(args.epub)
    except EpubBuildError as e:
        logger.error("Error: %s", e)
        return 1

    print(f"title: {metadata.title}")
    print(f"creator: {metadata.creator or ''}")
    print(f"publisher: {metadata.publisher or ''}")
    print(f"date: {metadata.date or ''}")
    print(f"direction: {'rtl' if metadata.is_rtl else 'ltr'}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
