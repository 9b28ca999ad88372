"""Validation of files before they enter the upload queue."""

from __future__ import annotations

from collections.abc import Iterable, Sequence

from vitransfer.const import (
    ALL_ALLOWED_EXTENSIONS,
    ALLOWED_ASSET_EXTENSIONS,
    THUMBNAIL_CATEGORY,
)
from vitransfer.exceptions import ValidationError
from vitransfer.models import LocalFile

# Checked in order; archives and videos are uploaded without a category.
_DETECTABLE_CATEGORIES = ("audio", "project", "document", "image")


def detect_category(file: LocalFile) -> str | None:
    """Guess the asset category of a file from its extension.

    Returns:
        The category name, or None when the extension does not imply one.
    """
    extension = file.extension
    for category in _DETECTABLE_CATEGORIES:
        if extension in ALLOWED_ASSET_EXTENSIONS[category]:
            return category
    return None


def validate_file(
    file: LocalFile,
    allowed_extensions: Iterable[str] = ALL_ALLOWED_EXTENSIONS,
    category: str | None = None,
) -> tuple[bool, str | None]:
    """Check that a file may be uploaded.

    Args:
        file: File selected by the user.
        allowed_extensions: Accepted extensions, including the leading dot.
        category: Asset category the file is uploaded as. Thumbnails are
            further restricted to JPG and PNG.

    Returns:
        Tuple of (valid, reason). Reason is None for valid files.
    """
    if file.size == 0:
        return False, "File is empty"

    allowed = [ext.lower() for ext in allowed_extensions]
    extension = file.extension
    if extension not in allowed:
        return (
            False,
            f'File type "{extension}" is not allowed. '
            f"Allowed types: {', '.join(allowed)}",
        )
    if (
        category == THUMBNAIL_CATEGORY
        and extension not in ALLOWED_ASSET_EXTENSIONS[THUMBNAIL_CATEGORY]
    ):
        return False, f"Thumbnails must be JPG or PNG format. Selected: {extension}"
    return True, None


def validate_batch(
    files: Sequence[LocalFile],
    allowed_extensions: Iterable[str] = ALL_ALLOWED_EXTENSIONS,
    category: str | None = None,
) -> None:
    """Validate a whole batch, reporting every failing file at once.

    Raises:
        ValidationError: If any file in the batch is invalid.
    """
    allowed = list(allowed_extensions)
    failures: list[tuple[str, str]] = []
    for file in files:
        valid, reason = validate_file(file, allowed, category)
        if not valid:
            failures.append((file.name, reason or "Invalid file type"))
    if failures:
        raise ValidationError(failures)
