"""Admission checks for single files and batches.

All functions here are pure: no I/O, no logging side effects, deterministic
given their inputs.  :func:`validate_single` runs its checks in a fixed order
(size, extension, MIME type) and stops at the first failure so the returned
message identifies exactly which check failed.

Usage::

    from filebox.core.validator import validate_batch, validate_single

    result = validate_single(handle, max_file_size=10 * 1024 * 1024)
    if not result.is_valid:
        print(result.error)

    batch = validate_batch(new_handles, existing_handles, max_total_size=50 * 1024 * 1024)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Sequence

from filebox.core.constants import (
    ALLOWED_FILE_TYPES,
    DEFAULT_MAX_FILE_SIZE,
    ErrorMessages,
)
from filebox.core.errors import ValidationError
from filebox.core.file_record import FileHandle, format_file_size


@dataclass(frozen=True)
class ValidationResult:
    """Pass/fail outcome of an admission check."""

    is_valid: bool
    error: str | None = None

    def raise_for_status(self) -> None:
        """Raise :class:`~filebox.core.errors.ValidationError` if invalid."""
        if not self.is_valid:
            raise ValidationError(self.error or "Validation failed")


_VALID = ValidationResult(is_valid=True)


@dataclass(frozen=True)
class BatchValidation:
    """Result of :func:`validate_batch`.

    Attributes:
        results: ``(handle, ValidationResult)`` pairs in input order.
        total_size_result: Aggregate-size verdict for existing files plus the
            new files that passed individually.
    """

    results: list[tuple[FileHandle, ValidationResult]] = field(default_factory=list)
    total_size_result: ValidationResult = _VALID


# ---------------------------------------------------------------------------
# Individual checks
# ---------------------------------------------------------------------------


def file_extension(filename: str) -> str:
    """Return the lowercased, dotted text after the last ``.`` of *filename*."""
    return "." + filename.rsplit(".", 1)[-1].lower()


def validate_file_size(size: int, max_size: int = DEFAULT_MAX_FILE_SIZE) -> bool:
    return 0 < size <= max_size


def validate_file_extension(
    filename: str,
    allowed_extensions: Iterable[str] = ALLOWED_FILE_TYPES.extensions,
) -> bool:
    extension = file_extension(filename)
    return any(allowed.lower() == extension for allowed in allowed_extensions)


def validate_file_mime_type(
    mime_type: str,
    allowed_mime_types: Iterable[str] = ALLOWED_FILE_TYPES.mime_types,
) -> bool:
    """Match *mime_type* exactly or through a ``category/*`` wildcard."""
    allowed = list(allowed_mime_types)
    if mime_type in allowed:
        return True
    category = mime_type.split("/", 1)[0]
    return any(
        entry.endswith("/*") and entry.split("/", 1)[0] == category
        for entry in allowed
    )


# ---------------------------------------------------------------------------
# Composite checks
# ---------------------------------------------------------------------------


def validate_single(
    handle: FileHandle,
    *,
    max_file_size: int = DEFAULT_MAX_FILE_SIZE,
    allowed_extensions: Iterable[str] = ALLOWED_FILE_TYPES.extensions,
    allowed_mime_types: Iterable[str] = ALLOWED_FILE_TYPES.mime_types,
) -> ValidationResult:
    """Validate one file: size, then extension, then declared MIME type."""
    if not validate_file_size(handle.size, max_file_size):
        return ValidationResult(
            is_valid=False,
            error=f"{ErrorMessages.FILE_TOO_LARGE} ({format_file_size(max_file_size)})",
        )
    if not validate_file_extension(handle.name, allowed_extensions):
        return ValidationResult(is_valid=False, error=ErrorMessages.INVALID_EXTENSION)
    if not validate_file_mime_type(handle.mime_type, allowed_mime_types):
        return ValidationResult(is_valid=False, error=ErrorMessages.INVALID_FILE_TYPE)
    return _VALID


def validate_total_size(
    handles: Iterable[FileHandle], max_total_size: int
) -> ValidationResult:
    total = sum(handle.size for handle in handles)
    if total > max_total_size:
        return ValidationResult(
            is_valid=False,
            error=f"{ErrorMessages.TOTAL_SIZE_EXCEEDED} ({format_file_size(max_total_size)})",
        )
    return _VALID


def validate_batch(
    new_files: Sequence[FileHandle],
    existing_files: Sequence[FileHandle],
    max_total_size: int,
    *,
    max_file_size: int = DEFAULT_MAX_FILE_SIZE,
    allowed_extensions: Iterable[str] = ALLOWED_FILE_TYPES.extensions,
    allowed_mime_types: Iterable[str] = ALLOWED_FILE_TYPES.mime_types,
) -> BatchValidation:
    """Validate *new_files* individually and against the aggregate ceiling.

    Files that fail individual validation are left out of the aggregate sum;
    they were never going to be admitted.
    """
    extensions = tuple(allowed_extensions)
    mime_types = tuple(allowed_mime_types)
    results = [
        (
            handle,
            validate_single(
                handle,
                max_file_size=max_file_size,
                allowed_extensions=extensions,
                allowed_mime_types=mime_types,
            ),
        )
        for handle in new_files
    ]
    admitted = [handle for handle, result in results if result.is_valid]
    total_size_result = validate_total_size(
        [*existing_files, *admitted], max_total_size
    )
    return BatchValidation(results=results, total_size_result=total_size_result)


def check_file_count_limit(current_count: int, incoming_count: int, max_files: int) -> bool:
    """Return ``True`` if adding *incoming_count* files stays within *max_files*.

    ``max_files <= 0`` means unlimited.
    """
    if max_files <= 0:
        return True
    return current_count + incoming_count <= max_files
