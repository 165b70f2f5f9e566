"""FileRecord and file handles — the unit of work flowing through intake.

A :class:`FileRecord` wraps one user-submitted file (a :class:`FileHandle`)
together with its lifecycle :class:`FileStatus`.  Records are immutable:
every phase (validate, scan, archive) receives a snapshot and produces a new
record via :meth:`FileRecord.transition`, which the single-threaded session
owner then swaps into its collection.  Nothing mutates a record another
reader can see.

Status lifecycle::

    Pending ──► Validating ──► Scanning ──► Valid
       │            │              └──────► Infected
       │            └─────► Invalid
       └──► Scanning / Invalid

Usage::

    from filebox.core.file_record import FileRecord, FileStatus, InMemoryFile

    record = FileRecord.create(InMemoryFile("notes.txt", b"hello", "text/plain"))
    record = record.transition(FileStatus.VALIDATING)
"""

from __future__ import annotations

import asyncio
import mimetypes
import random
import string
import time
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Protocol, runtime_checkable

from filebox.core.errors import InvalidTransitionError


class FileStatus(str, Enum):
    """Lifecycle status of a :class:`FileRecord`."""

    PENDING = "pending"
    VALIDATING = "validating"
    SCANNING = "scanning"
    VALID = "valid"
    INVALID = "invalid"
    INFECTED = "infected"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_STATUSES

    @property
    def is_in_flight(self) -> bool:
        return self in (FileStatus.VALIDATING, FileStatus.SCANNING)


_TERMINAL_STATUSES = frozenset(
    {FileStatus.VALID, FileStatus.INVALID, FileStatus.INFECTED}
)

_ALLOWED_TRANSITIONS: dict[FileStatus, frozenset[FileStatus]] = {
    FileStatus.PENDING: frozenset(
        {FileStatus.VALIDATING, FileStatus.SCANNING, FileStatus.INVALID}
    ),
    FileStatus.VALIDATING: frozenset({FileStatus.SCANNING, FileStatus.INVALID}),
    FileStatus.SCANNING: frozenset({FileStatus.VALID, FileStatus.INFECTED}),
    FileStatus.VALID: frozenset(),
    FileStatus.INVALID: frozenset(),
    FileStatus.INFECTED: frozenset(),
}

_ERROR_STATUSES = frozenset({FileStatus.INVALID, FileStatus.INFECTED})


# ---------------------------------------------------------------------------
# File handles
# ---------------------------------------------------------------------------


@runtime_checkable
class FileHandle(Protocol):
    """Minimal interface for raw file content supplied by the caller.

    ``name``, ``size`` and ``mime_type`` are the metadata a browser (or
    multipart upload) declares; ``mime_type`` may be an empty string.
    """

    name: str
    size: int
    mime_type: str

    async def read(self) -> bytes:
        """Return the complete file content."""
        ...

    async def read_head(self, n: int) -> bytes:
        """Return at most the first *n* bytes of the file."""
        ...


@dataclass(frozen=True)
class InMemoryFile:
    """A :class:`FileHandle` backed by bytes already in memory."""

    name: str
    data: bytes = field(repr=False)
    mime_type: str = ""

    @property
    def size(self) -> int:
        return len(self.data)

    async def read(self) -> bytes:
        return self.data

    async def read_head(self, n: int) -> bytes:
        return self.data[:n]


class LocalFile:
    """A :class:`FileHandle` for a file on the local filesystem.

    Reads are dispatched to a worker thread with :func:`asyncio.to_thread`
    so the event loop is never blocked by disk I/O.

    Args:
        path: Path of the file.  Its size is captured at construction time.
        mime_type: Declared MIME type.  Guessed from the extension when
            omitted; empty string when no guess is possible.
    """

    def __init__(self, path: str | Path, mime_type: str | None = None) -> None:
        self.path = Path(path)
        self.name = self.path.name
        self.size = self.path.stat().st_size
        if mime_type is None:
            mime_type = mimetypes.guess_type(self.name)[0] or ""
        self.mime_type = mime_type

    def __repr__(self) -> str:
        return f"LocalFile(path={str(self.path)!r}, size={self.size}, mime_type={self.mime_type!r})"

    async def read(self) -> bytes:
        return await asyncio.to_thread(self.path.read_bytes)

    async def read_head(self, n: int) -> bytes:
        return await asyncio.to_thread(self._read_head_sync, n)

    def _read_head_sync(self, n: int) -> bytes:
        with self.path.open("rb") as fh:
            return fh.read(n)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

_ID_ALPHABET = string.digits + string.ascii_lowercase


def generate_file_id(handle: FileHandle) -> str:
    """Return a best-effort unique id for *handle*.

    Combines name, size, the submission timestamp (epoch milliseconds) and a
    9-character base-36 random disambiguator.  Not cryptographically unique.
    """
    suffix = "".join(random.choices(_ID_ALPHABET, k=9))  # noqa: S311
    return f"{handle.name}-{handle.size}-{int(time.time() * 1000)}-{suffix}"


def format_file_size(num_bytes: int) -> str:
    """Format *num_bytes* for display, e.g. ``"10 MB"`` or ``"1.5 KB"``."""
    if num_bytes <= 0:
        return "0 Bytes"
    units = ("Bytes", "KB", "MB", "GB")
    exponent = 0
    while exponent < len(units) - 1 and num_bytes >= 1024 ** (exponent + 1):
        exponent += 1
    value = round(num_bytes / 1024**exponent, 2)
    text = f"{value:.2f}".rstrip("0").rstrip(".")
    return f"{text} {units[exponent]}"


# ---------------------------------------------------------------------------
# FileRecord
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FileRecord:
    """One user-submitted file and its lifecycle state.

    Attributes:
        id: Stable identifier generated at intake time.
        handle: The underlying :class:`FileHandle`; owned by this record.
        status: Current :class:`FileStatus`.
        error: Human-readable reason; set exactly when ``status`` is
            ``INVALID`` or ``INFECTED``.
        detail: Informational detail for non-error outcomes (e.g. the
            screener's "File passed security scan").
        progress: Optional 0-100 indicator for long-running operations.
    """

    id: str
    handle: FileHandle
    status: FileStatus = FileStatus.PENDING
    error: str | None = None
    detail: str | None = None
    progress: float | None = None

    @classmethod
    def create(cls, handle: FileHandle) -> FileRecord:
        return cls(id=generate_file_id(handle), handle=handle)

    @property
    def name(self) -> str:
        return self.handle.name

    @property
    def size(self) -> int:
        return self.handle.size

    def transition(
        self,
        status: FileStatus,
        error: str | None = None,
        *,
        detail: str | None = None,
        progress: float | None = None,
    ) -> FileRecord:
        """Return a copy of this record moved to *status*.

        Raises:
            InvalidTransitionError: If the move is not a forward transition
                of the lifecycle, or if *error* is missing for an error
                status (or present for a non-error status).
        """
        if status not in _ALLOWED_TRANSITIONS[self.status]:
            raise InvalidTransitionError(
                f"record {self.id!r}: cannot move from {self.status.value} to {status.value}"
            )
        if status in _ERROR_STATUSES and not error:
            raise InvalidTransitionError(
                f"record {self.id!r}: status {status.value} requires an error message"
            )
        if status not in _ERROR_STATUSES and error is not None:
            raise InvalidTransitionError(
                f"record {self.id!r}: status {status.value} cannot carry an error"
            )
        return replace(
            self, status=status, error=error, detail=detail, progress=progress
        )
