"""Tests for file validation before enqueue."""

from __future__ import annotations

from pathlib import Path

import pytest

from vitransfer.exceptions import ValidationError
from vitransfer.models import LocalFile
from vitransfer.upload_management.validation import (
    detect_category,
    validate_batch,
    validate_file,
)


def make_file(name: str, size: int = 10) -> LocalFile:
    return LocalFile(path=Path(name), name=name, size=size)


@pytest.mark.parametrize(
    "name", ["cut.mp4", "CUT.MOV", "mix.wav", "edit.prproj", "notes.md", "a.b.zip"]
)
def test_allowed_files(name: str) -> None:
    assert validate_file(make_file(name)) == (True, None)


def test_empty_file() -> None:
    assert validate_file(make_file("cut.mp4", size=0)) == (False, "File is empty")


def test_disallowed_extension() -> None:
    valid, reason = validate_file(make_file("setup.exe"), [".mp4", ".mov"])

    assert not valid
    assert reason == 'File type ".exe" is not allowed. Allowed types: .mp4, .mov'


def test_missing_extension() -> None:
    valid, reason = validate_file(make_file("README"))
    assert not valid
    assert reason.startswith('File type "" is not allowed.')


def test_allow_list_is_case_insensitive() -> None:
    assert validate_file(make_file("clip.mkv"), [".MKV"]) == (True, None)


def test_batch_reports_every_failure() -> None:
    batch = [make_file("ok.mp4"), make_file("bad.exe"), make_file("zero.mov", 0)]

    with pytest.raises(ValidationError) as exc_info:
        validate_batch(batch)

    assert exc_info.value.failures[0][0] == "bad.exe"
    assert exc_info.value.failures[1] == ("zero.mov", "File is empty")
    assert str(exc_info.value).splitlines()[1] == "zero.mov: File is empty"


def test_valid_and_empty_batches() -> None:
    validate_batch([make_file("ok.mp4")])
    validate_batch([])


@pytest.mark.parametrize("name", ["poster.jpg", "poster.JPEG", "poster.png"])
def test_thumbnails_accept_jpg_and_png(name: str) -> None:
    assert validate_file(make_file(name), category="thumbnail") == (True, None)


def test_thumbnail_rejects_other_images() -> None:
    valid, reason = validate_file(make_file("poster.tif"), category="thumbnail")

    assert not valid
    assert reason == "Thumbnails must be JPG or PNG format. Selected: .tif"


def test_thumbnail_rule_applies_to_whole_batch() -> None:
    batch = [make_file("a.png"), make_file("b.psd"), make_file("c.jpg")]

    with pytest.raises(ValidationError) as exc_info:
        validate_batch(batch, category="thumbnail")

    assert exc_info.value.file_names == ["b.psd"]


@pytest.mark.parametrize(
    "name, expected",
    [
        ("mix.WAV", "audio"),
        ("edit.fcpxml", "project"),
        ("brief.pdf", "document"),
        ("still.tiff", "image"),
        ("poster.png", "image"),
        ("bundle.zip", None),
        ("cut.mp4", None),
        ("README", None),
    ],
)
def test_detect_category(name: str, expected: str | None) -> None:
    assert detect_category(make_file(name)) == expected
