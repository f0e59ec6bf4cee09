from pathlib import Path

import pytest

from img2epub import (
    __version__,
    build_parser,
    default_output,
    main,
    metadata_main,
    overrides_from_args,
)


def test_overrides_unset_options_are_none():
    args = build_parser().parse_args(["images"])

    overrides = overrides_from_args(args)

    assert overrides.title is None
    assert overrides.is_rtl is None
    assert overrides.blank is None


@pytest.mark.parametrize("direction, expected", [("rtl", True), ("LTR", False)])
def test_overrides_direction(direction, expected):
    args = build_parser().parse_args(["images", "-d", direction, "-b", "-t", "T"])

    overrides = overrides_from_args(args)

    assert overrides.is_rtl is expected
    assert overrides.blank is True
    assert overrides.title == "T"


def test_default_output():
    assert default_output("comics/vol1/") == str(Path("comics/vol1.epub"))


def test_convert_and_read_back(sample_book: Path, tmp_path: Path, capsys):
    out = tmp_path / "book.epub"

    assert main([str(sample_book), str(out), "-c", "Someone", "-d", "rtl", "-q"]) == 0
    assert out.exists()

    assert metadata_main([str(out)]) == 0
    printed = capsys.readouterr().out.splitlines()
    assert printed == [
        "title: Sample",
        "creator: Someone",
        "publisher: ",
        "date: ",
        "direction: rtl",
    ]


def test_error_exit_status(tmp_path: Path):
    assert main([str(tmp_path), str(tmp_path / "out.epub"), "-t", "Nothing", "-q"]) == 1
    assert not (tmp_path / "out.epub").exists()


def test_invalid_workers(tmp_path: Path):
    with pytest.raises(SystemExit):
        main([str(tmp_path), "--workers", "0"])


@pytest.mark.parametrize("entry_point", [main, metadata_main])
def test_version(entry_point, capsys):
    with pytest.raises(SystemExit) as excinfo:
        entry_point(["--version"])
    assert excinfo.value.code == 0
    assert __version__ in capsys.readouterr().out
