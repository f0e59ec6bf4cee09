"""
Exceptions raised while turning an image folder into an EPUB.

Every stage of the conversion raises a subclass of EpubBuildError so the
command-line front end can report any failure with a single handler.
"""


class EpubBuildError(Exception):
    """Base class for all conversion errors."""


class NoImagesFound(EpubBuildError):
    """No usable page image was found in the source folder."""

    def __init__(self, directory):
        self.directory = directory
        super().__init__(f"No page images found in: {directory}")


class MissingTitle(EpubBuildError):
    """Neither metadata.json nor the overrides provide a title."""

    def __init__(self):
        super().__init__(
            "No title available: set 'title' in metadata.json or pass --title"
        )


class InvalidMetadata(EpubBuildError):
    """A metadata file exists but cannot be used."""

    def __init__(self, path, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Invalid metadata in {path}: {reason}")


class InvalidPageName(EpubBuildError):
    """An image file name cannot be placed in a well-defined page order."""

    def __init__(self, path, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Invalid page file name {path}: {reason}")


class ImageDecodeFailure(EpubBuildError):
    """A matched image file could not be decoded."""

    def __init__(self, path, reason: str = ""):
        self.path = path
        self.reason = reason
        super().__init__(f"Cannot decode image {path}: {reason}")


class FilesystemFailure(EpubBuildError):
    """Reading or writing a file of the EPUB failed."""

    def __init__(self, path, reason: str = ""):
        self.path = path
        self.reason = reason
        super().__init__(f"File system error on {path}: {reason}")
