"""IntakeSession — the state machine behind one file intake.

:class:`IntakeSession` owns the ordered collection of
:class:`~filebox.core.file_record.FileRecord` objects and drives each batch
through ``add → validate → screen → admit/reject``, then archives the
admitted files.  It is the only object that replaces records in the
collection; validation, screening and archiving each work on snapshots and
hand new record values back.

Entry points consumed by a presentation layer:

* :meth:`files_added` / :meth:`submit_files` — a batch of file handles.
* :meth:`remove_file` — drop one record that is not in flight.
* :meth:`create_archive` — archive every ``VALID`` record.
* :meth:`reset` — discard everything (closing the intake).

Exposed state: :attr:`records`, :attr:`scanning`, :attr:`creating`,
:attr:`archive_progress`, :attr:`valid_file_count`,
:attr:`can_create_archive`, plus the ``on_change``, ``on_notify`` and
``on_complete`` callbacks.

**Cancellation** is cooperative: :meth:`reset` clears the collection and
bumps an internal generation counter.  Screenings or archive builds already
in flight run to completion, but their results are dropped on arrival
because they belong to an older generation.

Usage::

    session = IntakeSession(
        config={"max_file_size": 10 * 1024 * 1024},
        on_complete=lambda data, names: Path("out.zip").write_bytes(data),
    )
    await session.files_added([LocalFile("notes.txt")])
    await session.create_archive()
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Callable, Iterable, Literal, Mapping, Sequence

from filebox.config import IntakeConfig, get_settings
from filebox.core.archiver import ArchiveResult
from filebox.core.archiver import create_archive as build_archive
from filebox.core.constants import ErrorMessages, SuccessMessages
from filebox.core.errors import ArchiveError, ValidationError
from filebox.core.file_record import FileHandle, FileRecord, FileStatus
from filebox.core.orchestrator import scan_many
from filebox.core.screener import Screener
from filebox.core.validator import check_file_count_limit, validate_batch

logger = logging.getLogger(__name__)

NotifyLevel = Literal["success", "error"]
ChangeCallback = Callable[[tuple[FileRecord, ...]], None]
NotifyCallback = Callable[[NotifyLevel, str], None]
CompleteCallback = Callable[[bytes, list[str]], None]


def _log_event(event: str, **fields: Any) -> None:
    logger.info(json.dumps({"event": event, **fields}))


class IntakeSession:
    """In-memory state for one intake, from first file to finished archive.

    Args:
        config: Partial configuration mapping (or a full
            :class:`~filebox.config.IntakeConfig`) merged over the defaults
            from :func:`~filebox.config.get_settings`.
        screener: Screener to use.  Built from ``config.scanner`` when
            omitted.
        on_change: Called with a snapshot of all records whenever the
            collection changes.
        on_notify: Called with ``(level, message)`` for user notifications.
        on_complete: Called exactly once per successful archive with
            ``(archive_bytes, resolved_names)``.
        scan_concurrency: Maximum in-flight screenings.  Defaults to the
            ``scan_concurrency`` setting (3).
    """

    def __init__(
        self,
        config: IntakeConfig | Mapping[str, Any] | None = None,
        *,
        screener: Screener | None = None,
        on_change: ChangeCallback | None = None,
        on_notify: NotifyCallback | None = None,
        on_complete: CompleteCallback | None = None,
        scan_concurrency: int | None = None,
    ) -> None:
        settings = get_settings()
        if isinstance(config, IntakeConfig):
            self.config = config
        else:
            self.config = IntakeConfig.from_settings(settings).merged(config)
        self._screener = screener or Screener(self.config.scanner)
        self._scan_concurrency = scan_concurrency or settings.scan_concurrency
        self._on_change = on_change
        self._on_notify = on_notify
        self._on_complete = on_complete

        self._records: dict[str, FileRecord] = {}
        self._generation = 0
        self._scans_in_flight = 0
        # Shared by every batch, so the bound holds session-wide. Screens
        # orphaned by reset() keep their slots until they finish.
        self._scan_slots = asyncio.Semaphore(self._scan_concurrency)
        self._creating = False
        self._archive_progress = 0.0
        self._background: set[asyncio.Task[list[FileRecord]]] = set()

    # ------------------------------------------------------------------
    # Exposed state
    # ------------------------------------------------------------------

    @property
    def records(self) -> tuple[FileRecord, ...]:
        """All records in insertion (display and archive) order."""
        return tuple(self._records.values())

    def get(self, record_id: str) -> FileRecord | None:
        return self._records.get(record_id)

    @property
    def scanning(self) -> bool:
        return self._scans_in_flight > 0

    @property
    def creating(self) -> bool:
        return self._creating

    @property
    def archive_progress(self) -> float:
        return self._archive_progress

    @property
    def valid_file_count(self) -> int:
        return sum(1 for r in self._records.values() if r.status is FileStatus.VALID)

    @property
    def can_create_archive(self) -> bool:
        return self.valid_file_count > 0 and not self.scanning and not self.creating

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def files_added(self, batch: Sequence[FileHandle]) -> list[FileRecord]:
        """Validate and screen *batch*, adding its records to the session.

        Returns the batch's records in their final state (empty when the
        whole batch was refused, or when the session was reset while the
        batch was being screened).
        """
        if not batch:
            return []
        generation = self._generation

        try:
            if not check_file_count_limit(
                len(self._records), len(batch), self.config.max_files
            ):
                raise ValidationError(ErrorMessages.MAX_FILES_EXCEEDED)
        except ValidationError as exc:
            self._notify("error", str(exc))
            _log_event("intake_batch_refused", files=len(batch), reason=str(exc))
            return []

        # Rejected records will never be archived, so they do not count
        # toward the aggregate ceiling.
        existing = [
            record.handle
            for record in self._records.values()
            if record.status not in (FileStatus.INVALID, FileStatus.INFECTED)
        ]
        validation = validate_batch(
            batch,
            existing,
            self.config.max_total_size,
            max_file_size=self.config.max_file_size,
            allowed_extensions=self.config.allowed_extensions,
            allowed_mime_types=self.config.allowed_mime_types,
        )
        total_size_error: str | None = None
        try:
            validation.total_size_result.raise_for_status()
        except ValidationError as exc:
            total_size_error = str(exc)
            self._notify("error", total_size_error)

        new_records: list[FileRecord] = []
        for handle, result in validation.results:
            record = FileRecord.create(handle).transition(FileStatus.VALIDATING)
            if not result.is_valid:
                record = record.transition(FileStatus.INVALID, result.error)
            elif total_size_error is not None:
                record = record.transition(FileStatus.INVALID, total_size_error)
            new_records.append(record)

        for record in new_records:
            if record.status is FileStatus.INVALID:
                self._notify("error", f"{record.name}: {record.error}")
        to_scan = [r for r in new_records if r.status is FileStatus.VALIDATING]
        if to_scan:
            self._notify("success", f"{len(to_scan)} file(s) added for scanning")

        for record in new_records:
            self._records[record.id] = record
        self._changed()
        _log_event(
            "intake_batch",
            files=len(batch),
            accepted_for_scan=len(to_scan),
            invalid=len(new_records) - len(to_scan),
        )

        if not to_scan:
            return new_records

        scanned = await self._scan(to_scan, generation)
        if generation != self._generation:
            return []
        by_id = {record.id: record for record in scanned}
        return [by_id.get(record.id, record) for record in new_records]

    def submit_files(self, batch: Sequence[FileHandle]) -> asyncio.Task[list[FileRecord]]:
        """Schedule :meth:`files_added` in the background and return its task."""
        task = asyncio.create_task(self.files_added(batch))
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    def remove_file(self, record_id: str) -> bool:
        """Remove a record that is not currently being validated or scanned.

        Nothing can be removed while an archive is being built.  Returns
        ``True`` if the record was removed.
        """
        record = self._records.get(record_id)
        if record is None or record.status.is_in_flight or self._creating:
            return False
        del self._records[record_id]
        self._changed()
        self._notify("success", "File removed")
        return True

    async def create_archive(self) -> ArchiveResult:
        """Archive every ``VALID`` record, fire ``on_complete`` and reset.

        Raises:
            ArchiveError: When there is nothing to archive, an operation is
                still in flight, or the archive build fails.  The session's
                records are left unchanged so the caller may retry.
        """
        valid = [r for r in self._records.values() if r.status is FileStatus.VALID]
        if not valid:
            self._notify("error", ErrorMessages.NO_VALID_FILES)
            raise ArchiveError(ErrorMessages.NO_VALID_FILES)
        if self.scanning or self.creating:
            raise ArchiveError("Archive creation is unavailable while files are being processed")

        generation = self._generation
        self._creating = True
        self._archive_progress = 0.0
        try:
            result = await build_archive(
                [record.handle for record in valid],
                on_progress=lambda value: self._set_archive_progress(value, generation),
            )
        except ArchiveError as exc:
            self._notify("error", str(exc))
            raise
        finally:
            if generation == self._generation:
                self._creating = False
                self._archive_progress = 0.0

        if generation != self._generation:
            logger.info("Dropping archive result for a session that was reset")
            return result

        self._notify("success", SuccessMessages.ARCHIVE_CREATED)
        _log_event(
            "intake_complete",
            entries=len(result.resolved_names),
            size_bytes=len(result.archive_bytes),
        )
        if self._on_complete is not None:
            self._on_complete(result.archive_bytes, list(result.resolved_names))
        self.reset()
        return result

    def reset(self) -> None:
        """Discard every record regardless of status.

        In-flight operations are not cancelled; their results are dropped.
        """
        self._generation += 1
        self._records.clear()
        self._scans_in_flight = 0
        self._creating = False
        self._archive_progress = 0.0
        self._changed()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _scan(self, records: list[FileRecord], generation: int) -> list[FileRecord]:
        self._scans_in_flight += 1
        try:
            scanned = await scan_many(
                records,
                self._screener,
                lambda record: self._replace(record, generation),
                limit=self._scan_concurrency,
                slots=self._scan_slots,
            )
        finally:
            if generation == self._generation:
                self._scans_in_flight -= 1

        if generation != self._generation:
            logger.info("Dropping scan results for a session that was reset")
            return scanned

        for record in scanned:
            self._replace(record, generation)
        self._report_scan_results(scanned)
        return scanned

    def _replace(self, record: FileRecord, generation: int) -> None:
        if generation != self._generation or record.id not in self._records:
            return
        if self._records[record.id] == record:
            return
        self._records[record.id] = record
        self._changed()

    def _report_scan_results(self, scanned: Iterable[FileRecord]) -> None:
        scanned = list(scanned)
        clean = [r for r in scanned if r.status is FileStatus.VALID]
        infected = [r for r in scanned if r.status is FileStatus.INFECTED]
        if clean:
            self._notify("success", f"{len(clean)} file(s) passed security scan")
        for record in infected:
            self._notify("error", f"{record.name}: {record.error or ErrorMessages.VIRUS_DETECTED}")
        _log_event("intake_scan_complete", clean=len(clean), infected=len(infected))

    def _set_archive_progress(self, value: float, generation: int) -> None:
        if generation == self._generation:
            self._archive_progress = value

    def _changed(self) -> None:
        if self._on_change is not None:
            self._on_change(self.records)

    def _notify(self, level: NotifyLevel, message: str) -> None:
        if self._on_notify is not None:
            self._on_notify(level, message)
