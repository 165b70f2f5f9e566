"""Exception hierarchy for the FileBox intake pipeline.

Only :class:`ArchiveError` and :class:`InvalidTransitionError` normally reach
callers.  Validation and screening failures are reported as result objects
and turned into record statuses; :class:`ScanError` and
:class:`TransportError` are raised inside the screener and converted into a
failing :class:`~filebox.core.screener.ScanResult` there (fail-closed).
"""

from __future__ import annotations


class FileBoxError(Exception):
    """Base exception for all FileBox errors."""


class ValidationError(FileBoxError):
    """A file or batch failed admission (size, type, aggregate size, count).

    Always recoverable: the affected file is excluded and the user notified.
    """


class ScanError(FileBoxError):
    """A screening step failed or the scanner itself faulted.

    The affected record is marked ``Infected``; an error is never silently
    treated as clean.
    """


class TransportError(ScanError):
    """The remote scanner timed out, was unreachable, or returned non-2xx.

    Attributes:
        status_code: HTTP status returned by the endpoint, when one was received.
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ArchiveError(FileBoxError):
    """Archive creation failed (empty input or compression failure).

    Aborts only the archive operation; session records are left untouched so
    the caller may retry.
    """


class InvalidTransitionError(FileBoxError):
    """A :class:`~filebox.core.file_record.FileRecord` was moved backwards or
    out of a terminal status."""
