"""Bounded-concurrency screening of many records.

:func:`scan_many` runs the :class:`~filebox.core.screener.Screener` over the
``PENDING``/``VALIDATING`` records of a collection with at most ``limit``
(default 3) screenings in flight at once.  It uses a small worker pool:
``limit`` logical workers each claim the next unclaimed index from a shared
counter until the queue is exhausted.  Claiming happens between suspension
points on the single event-loop thread, so no lock is needed.

Callers that run several ``scan_many`` calls side by side pass one shared
:class:`asyncio.Semaphore` as ``slots``; every screening holds a slot, so the
bound applies across all of those calls together.

Guarantees:

* For every record actually screened, ``on_progress(record)`` fires with
  status ``SCANNING`` immediately before the screen starts and again with
  the terminal status immediately after it finishes.
* Completion order across records is whatever I/O latency makes it; the
  returned list always matches the input order and length.
* Records already ``SCANNING`` (owned by another call) or terminal
  (``VALID``/``INVALID``/``INFECTED``) pass through untouched and are never
  screened.
* A failure while screening one record marks only that record ``INFECTED``.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Sequence

from prometheus_client import Gauge

from filebox.core.constants import CONCURRENT_SCAN_LIMIT, ErrorMessages
from filebox.core.file_record import FileRecord, FileStatus
from filebox.core.screener import Screener

logger = logging.getLogger(__name__)

scans_in_flight = Gauge(
    "filebox_scans_in_flight",
    "Number of screenings currently in flight",
)

ProgressCallback = Callable[[FileRecord], None]


async def scan_record(record: FileRecord, screener: Screener) -> FileRecord:
    """Screen one ``SCANNING`` record and return it in its terminal status."""
    try:
        result = await screener.screen(record.handle)
    except Exception as exc:
        logger.error("Screener raised for record=%s: %r", record.id, exc)
        return record.transition(
            FileStatus.INFECTED,
            f"{ErrorMessages.SCAN_ERROR}: {exc}" if str(exc) else "Scan failed",
            progress=100,
        )
    if result.is_clean:
        return record.transition(FileStatus.VALID, detail=result.details, progress=100)
    return record.transition(
        FileStatus.INFECTED,
        result.message or ErrorMessages.VIRUS_DETECTED,
        progress=100,
    )


async def scan_many(
    records: Sequence[FileRecord],
    screener: Screener,
    on_progress: ProgressCallback | None = None,
    *,
    limit: int = CONCURRENT_SCAN_LIMIT,
    slots: asyncio.Semaphore | None = None,
) -> list[FileRecord]:
    """Screen every unclaimed record in *records*, ``limit`` at a time.

    Args:
        records: Input records in display order.
        screener: Shared screener instance.
        on_progress: Optional callback invoked with each record's
            ``SCANNING`` snapshot and then its terminal snapshot.
        limit: Maximum simultaneously in-flight screenings for this call.
        slots: Optional semaphore shared with other concurrent calls.  A
            screening starts only once it holds a slot.

    Returns:
        A new list, same length and order as *records*, with every screened
        record replaced by its terminal version.
    """
    if limit < 1:
        raise ValueError("limit must be >= 1")

    pending = [
        record
        for record in records
        if record.status in (FileStatus.PENDING, FileStatus.VALIDATING)
    ]
    if not pending:
        return list(records)
    if slots is None:
        slots = asyncio.Semaphore(limit)

    results: list[FileRecord | None] = [None] * len(pending)
    next_index = 0

    async def worker() -> None:
        nonlocal next_index
        while next_index < len(pending):
            index = next_index
            next_index += 1

            async with slots:
                scanning = pending[index].transition(FileStatus.SCANNING, progress=0)
                if on_progress is not None:
                    on_progress(scanning)

                scans_in_flight.inc()
                try:
                    final = await scan_record(scanning, screener)
                finally:
                    scans_in_flight.dec()

            results[index] = final
            if on_progress is not None:
                on_progress(final)

    worker_count = min(limit, len(pending))
    logger.debug("Screening %d record(s) with %d worker(s)", len(pending), worker_count)
    await asyncio.gather(*(worker() for _ in range(worker_count)))

    scanned = {record.id: record for record in results if record is not None}
    return [scanned.get(record.id, record) for record in records]
