"""Archiver — packages admitted files into a single ZIP container.

:func:`create_archive` runs in two weighted phases reported through one
continuous, monotonic 0-100 progress value:

1. **ingest** (0-50%) — read each file's bytes in input order and assign it a
   collision-free entry name (``report.pdf``, ``report_1.pdf``, ...).
2. **compress** (50-100%) — DEFLATE every entry at a fixed medium level
   (6) into one container.  Progress is interpolated from the fraction of
   input bytes compressed so far.

Entries carry a fixed timestamp, so the same input always produces the same
bytes.  Compression of each entry runs in a worker thread
(:func:`asyncio.to_thread`); the event loop is free between entries.

Usage::

    from filebox.core.archiver import create_archive

    result = await create_archive(handles, on_progress=lambda p: print(f"{p:.0f}%"))
    Path("out.zip").write_bytes(result.archive_bytes)
    print(result.resolved_names)
"""

from __future__ import annotations

import asyncio
import io
import logging
import time
import zipfile
from dataclasses import dataclass, field
from datetime import date
from typing import Callable, Sequence

from opentelemetry import trace
from prometheus_client import Counter

from filebox.core.constants import ARCHIVE_COMPRESSION_LEVEL, ErrorMessages
from filebox.core.errors import ArchiveError
from filebox.core.file_record import FileHandle

logger = logging.getLogger(__name__)

tracer = trace.get_tracer("filebox.archiver")

archives_total = Counter(
    "filebox_archives_total",
    "Total number of archive builds by outcome",
    ["outcome"],
)

#: Timestamp stored on every entry (the earliest a ZIP can represent).
_ENTRY_DATE_TIME = (1980, 1, 1, 0, 0, 0)

_INGEST_WEIGHT = 50.0

ArchiveProgressCallback = Callable[[float], None]


@dataclass(frozen=True)
class ArchiveResult:
    """Output of :func:`create_archive`.

    Attributes:
        archive_bytes: The complete ZIP container.
        resolved_names: Entry names as stored, in input order.
    """

    archive_bytes: bytes = field(repr=False)
    resolved_names: list[str] = field(default_factory=list)


def resolve_unique_name(name: str, used: set[str] | Sequence[str]) -> str:
    """Return *name*, or *name* with ``_N`` inserted before its extension,
    such that the result is not in *used*.

    The extension is the text after the last dot.  A name without a dot gets
    the suffix appended.
    """
    if name not in used:
        return name
    stem, dot, ext = name.rpartition(".")
    if not dot or not stem:
        stem, ext = name, ""
    counter = 1
    while True:
        candidate = f"{stem}_{counter}.{ext}" if ext else f"{stem}_{counter}"
        if candidate not in used:
            return candidate
        counter += 1


def generate_archive_filename(prefix: str = "filebox", today: date | None = None) -> str:
    """Return a download name such as ``"filebox-2026-10-17.zip"``."""
    today = today or date.today()
    return f"{prefix}-{today.isoformat()}.zip"


class _ProgressReporter:
    """Forwards progress to a callback, never letting the value go backwards."""

    def __init__(self, callback: ArchiveProgressCallback | None) -> None:
        self._callback = callback
        self._last = 0.0

    def report(self, value: float) -> None:
        value = min(100.0, max(self._last, value))
        self._last = value
        if self._callback is not None:
            self._callback(value)


def _write_entry(zf: zipfile.ZipFile, name: str, data: bytes) -> None:
    info = zipfile.ZipInfo(name, date_time=_ENTRY_DATE_TIME)
    info.compress_type = zipfile.ZIP_DEFLATED
    info.external_attr = 0o644 << 16
    zf.writestr(info, data, compress_type=zipfile.ZIP_DEFLATED, compresslevel=ARCHIVE_COMPRESSION_LEVEL)


async def create_archive(
    files: Sequence[FileHandle],
    on_progress: ArchiveProgressCallback | None = None,
) -> ArchiveResult:
    """Build one ZIP container from *files*.

    Args:
        files: Admitted file handles, in the order they should be stored.
        on_progress: Optional callback receiving a monotonic 0-100 value.

    Returns:
        :class:`ArchiveResult` with the container bytes and the resolved
        entry names in input order.

    Raises:
        ArchiveError: If *files* is empty, or reading or compression fails.
            The original exception is chained as ``__cause__``.
    """
    if not files:
        archives_total.labels(outcome="empty").inc()
        raise ArchiveError(ErrorMessages.NO_FILES)

    start_ms = int(time.monotonic() * 1000)
    progress = _ProgressReporter(on_progress)

    with tracer.start_as_current_span("filebox.archive") as span:
        span.set_attribute("archive.file_count", len(files))
        try:
            entries = await _ingest(files, progress)
            archive_bytes = await _compress(entries, progress)
        except Exception as exc:
            span.record_exception(exc)
            archives_total.labels(outcome="error").inc()
            logger.error("Archive creation failed: %r", exc)
            raise ArchiveError(f"{ErrorMessages.ZIP_ERROR}: {exc}") from exc
        span.set_attribute("archive.size_bytes", len(archive_bytes))

    progress.report(100.0)
    archives_total.labels(outcome="success").inc()
    logger.info(
        "Archive created entries=%d size_bytes=%d duration_ms=%d",
        len(entries),
        len(archive_bytes),
        int(time.monotonic() * 1000) - start_ms,
    )
    return ArchiveResult(
        archive_bytes=archive_bytes,
        resolved_names=[name for name, _ in entries],
    )


async def _ingest(
    files: Sequence[FileHandle], progress: _ProgressReporter
) -> list[tuple[str, bytes]]:
    entries: list[tuple[str, bytes]] = []
    used: set[str] = set()
    for index, handle in enumerate(files):
        data = await handle.read()
        name = resolve_unique_name(handle.name, used)
        used.add(name)
        entries.append((name, data))
        progress.report((index + 1) / len(files) * _INGEST_WEIGHT)
    return entries


async def _compress(
    entries: list[tuple[str, bytes]], progress: _ProgressReporter
) -> bytes:
    total_bytes = sum(len(data) for _, data in entries)
    done_bytes = 0
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        for index, (name, data) in enumerate(entries):
            await asyncio.to_thread(_write_entry, zf, name, data)
            done_bytes += len(data)
            if total_bytes:
                fraction = done_bytes / total_bytes
            else:
                fraction = (index + 1) / len(entries)
            progress.report(_INGEST_WEIGHT + fraction * (100.0 - _INGEST_WEIGHT))
    return buffer.getvalue()
