import json
from pathlib import Path

import pytest
from PIL import Image


def _save_image(path: Path, size, color=(255, 0, 0)) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    Image.new("RGB", size, color=color).save(path)
    return path


@pytest.fixture
def make_image():
    return _save_image


@pytest.fixture
def write_metadata():
    def write(folder: Path, data) -> Path:
        path = folder / "metadata.json"
        path.write_text(json.dumps(data), encoding="utf-8")
        return path

    return write


@pytest.fixture
def sample_book(tmp_path: Path, make_image, write_metadata) -> Path:
    """page001.png (100x200, red), page002.png (150x150, blue), title 'Sample'."""
    folder = tmp_path / "book"
    make_image(folder / "page001.png", (100, 200), (255, 0, 0))
    make_image(folder / "page002.png", (150, 150), (0, 0, 255))
    write_metadata(folder, {"title": "Sample"})
    return folder
