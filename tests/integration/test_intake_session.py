"""Integration tests for filebox/core/session.py.

Drives :class:`~filebox.core.session.IntakeSession` end to end with the real
validator, screener, orchestrator and archiver.  Only remote scanners are
faked.

Coverage targets:
* A mixed batch: valid, oversized, disallowed and disguised files end in
  Valid / Invalid / Infected, and only Valid files reach the archive.
* Aggregate-size and file-count refusals.
* Notifications and the on_change feed.
* remove_file refuses in-flight records and anything while archiving.
* Concurrent batches share one screening bound.
* create_archive — on_complete fires exactly once, the session resets,
  failures leave records untouched, nothing to archive raises.
* reset during screening drops late results.
* submit_files runs in the background.
"""

from __future__ import annotations

import asyncio
import dataclasses
import io
import zipfile

import pytest

from filebox.config import ScannerConfig
from filebox.core.constants import ErrorMessages, SuccessMessages
from filebox.core.errors import ArchiveError
from filebox.core.file_record import FileStatus, InMemoryFile
from filebox.core.scan_engine import ScanResult
from filebox.core.screener import Screener
from filebox.core.session import IntakeSession

MB = 1024 * 1024


class _SizedFile:
    def __init__(self, name: str, size: int, mime_type: str) -> None:
        self.name = name
        self.size = size
        self.mime_type = mime_type

    async def read(self) -> bytes:
        return b"\x00" * self.size

    async def read_head(self, n: int) -> bytes:
        return b"\x00" * min(n, self.size)


class _BlockingRemote:
    """Remote scanner that holds every verdict until released."""

    def __init__(self) -> None:
        self.release = asyncio.Event()
        self.calls = 0

    async def scan(self, name: str, data: bytes, mime_type: str) -> ScanResult:
        self.calls += 1
        await self.release.wait()
        return ScanResult(is_clean=True, details="remote ok")


class _PeakScreener:
    """Tracks how many screenings overlap."""

    def __init__(self) -> None:
        self.in_flight = 0
        self.peak = 0

    async def screen(self, handle) -> ScanResult:
        self.in_flight += 1
        self.peak = max(self.peak, self.in_flight)
        try:
            await asyncio.sleep(0.005)
        finally:
            self.in_flight -= 1
        return ScanResult(is_clean=True, details="ok")


class _Recorder:
    def __init__(self) -> None:
        self.notifications: list[tuple[str, str]] = []
        self.changes: list[tuple] = []
        self.completed: list[tuple[bytes, list[str]]] = []

    def notify(self, level: str, message: str) -> None:
        self.notifications.append((level, message))

    def change(self, records: tuple) -> None:
        self.changes.append(records)

    def complete(self, data: bytes, names: list[str]) -> None:
        self.completed.append((data, names))

    def messages(self, level: str) -> list[str]:
        return [message for lvl, message in self.notifications if lvl == level]


def _session(recorder: _Recorder, config=None, **kwargs) -> IntakeSession:
    return IntakeSession(
        config,
        on_notify=recorder.notify,
        on_change=recorder.change,
        on_complete=recorder.complete,
        **kwargs,
    )


def _names(archive_bytes: bytes) -> list[str]:
    with zipfile.ZipFile(io.BytesIO(archive_bytes)) as zf:
        return zf.namelist()


# ---------------------------------------------------------------------------
# files_added
# ---------------------------------------------------------------------------


class TestFilesAdded:
    @pytest.mark.asyncio
    async def test_mixed_batch_end_to_end(self, text_file) -> None:
        recorder = _Recorder()
        session = _session(recorder)
        batch = [
            text_file("notes.txt"),
            _SizedFile("movie.mp4", 20 * MB, "video/mp4"),
            InMemoryFile("tool.exe", b"MZ", "application/octet-stream"),
            InMemoryFile("invoice.exe.pdf", b"%PDF-1.4", "application/pdf"),
        ]

        records = await session.files_added(batch)

        assert [r.status for r in records] == [
            FileStatus.VALID,
            FileStatus.INVALID,
            FileStatus.INVALID,
            FileStatus.INFECTED,
        ]
        assert records[0].detail == SuccessMessages.SCAN_PASSED
        assert records[1].error == f"{ErrorMessages.FILE_TOO_LARGE} (10 MB)"
        assert records[2].error == ErrorMessages.INVALID_EXTENSION
        assert records[3].error.startswith(ErrorMessages.VIRUS_DETECTED)
        assert [r.id for r in session.records] == [r.id for r in records]
        assert session.valid_file_count == 1
        assert session.can_create_archive
        assert not session.scanning

        result = await session.create_archive()

        assert result.resolved_names == ["notes.txt"]
        assert _names(result.archive_bytes) == ["notes.txt"]
        assert recorder.completed == [(result.archive_bytes, ["notes.txt"])]

    @pytest.mark.asyncio
    async def test_notifications(self, text_file) -> None:
        recorder = _Recorder()
        session = _session(recorder)

        await session.files_added([text_file("a.txt"), InMemoryFile("b.exe", b"x", "")])

        assert f"b.exe: {ErrorMessages.INVALID_EXTENSION}" in recorder.messages("error")
        assert "1 file(s) added for scanning" in recorder.messages("success")
        assert "1 file(s) passed security scan" in recorder.messages("success")

    @pytest.mark.asyncio
    async def test_change_feed_shows_lifecycle(self, text_file) -> None:
        recorder = _Recorder()
        session = _session(recorder)

        await session.files_added([text_file()])

        statuses = [snapshot[0].status for snapshot in recorder.changes if snapshot]
        assert statuses[0] is FileStatus.VALIDATING
        assert FileStatus.SCANNING in statuses
        assert statuses[-1] is FileStatus.VALID

    @pytest.mark.asyncio
    async def test_empty_batch_is_noop(self) -> None:
        recorder = _Recorder()
        assert await _session(recorder).files_added([]) == []
        assert recorder.notifications == []

    @pytest.mark.asyncio
    async def test_max_files_refuses_whole_batch(self, text_file) -> None:
        recorder = _Recorder()
        session = _session(recorder, {"max_files": 2})
        await session.files_added([text_file("a.txt")])

        records = await session.files_added([text_file("b.txt"), text_file("c.txt")])

        assert records == []
        assert len(session.records) == 1
        assert ErrorMessages.MAX_FILES_EXCEEDED in recorder.messages("error")

    @pytest.mark.asyncio
    async def test_total_size_marks_new_files_invalid(self) -> None:
        recorder = _Recorder()
        session = _session(recorder, {"max_total_size": 15 * MB, "scanner": {"enabled": False}})
        await session.files_added([_SizedFile("first.mp4", 8 * MB, "video/mp4")])

        records = await session.files_added([_SizedFile("second.mp4", 8 * MB, "video/mp4")])

        expected = f"{ErrorMessages.TOTAL_SIZE_EXCEEDED} (15 MB)"
        assert records[0].status is FileStatus.INVALID
        assert records[0].error == expected
        assert expected in recorder.messages("error")
        assert session.valid_file_count == 1

    @pytest.mark.asyncio
    async def test_rejected_records_do_not_count_toward_total(self) -> None:
        session = _session(_Recorder(), {"max_total_size": 15 * MB, "scanner": {"enabled": False}})
        await session.files_added([InMemoryFile("x.exe", b"\x00" * (12 * MB), "")])

        records = await session.files_added([_SizedFile("clip.mp4", 8 * MB, "video/mp4")])

        assert records[0].status is FileStatus.VALID

    @pytest.mark.asyncio
    async def test_scanner_disabled_admits_without_heuristics(self) -> None:
        session = _session(_Recorder(), {"scanner": {"enabled": False}})
        records = await session.files_added([InMemoryFile("x.png", b"hello", "image/png")])
        assert records[0].status is FileStatus.VALID
        assert records[0].detail == "Scanning disabled"

    @pytest.mark.asyncio
    async def test_injected_screener_is_used(self) -> None:
        screener = Screener(ScannerConfig(enabled=False))
        session = IntakeSession(screener=screener)
        records = await session.files_added([InMemoryFile("x.png", b"nope", "image/png")])
        assert records[0].status is FileStatus.VALID

    @pytest.mark.asyncio
    async def test_submit_files_runs_in_background(self, text_file) -> None:
        session = _session(_Recorder())
        task = session.submit_files([text_file()])
        records = await task
        assert records[0].status is FileStatus.VALID
        assert session.valid_file_count == 1

    @pytest.mark.asyncio
    async def test_concurrent_batches_share_three_slots(self, text_file) -> None:
        screener = _PeakScreener()
        session = _session(_Recorder(), screener=screener)

        first = session.submit_files([text_file(f"a{i}.txt") for i in range(5)])
        second = session.submit_files([text_file(f"b{i}.txt") for i in range(5)])
        await asyncio.gather(first, second)

        assert screener.peak <= 3
        assert session.valid_file_count == 10


# ---------------------------------------------------------------------------
# remove_file / reset
# ---------------------------------------------------------------------------


class TestRemoveAndReset:
    @pytest.mark.asyncio
    async def test_remove_terminal_record(self, text_file) -> None:
        recorder = _Recorder()
        session = _session(recorder)
        [record] = await session.files_added([text_file()])

        assert session.remove_file(record.id)
        assert session.records == ()
        assert "File removed" in recorder.messages("success")

    @pytest.mark.asyncio
    async def test_remove_unknown_id(self) -> None:
        assert not _session(_Recorder()).remove_file("nope")

    @pytest.mark.asyncio
    async def test_remove_refuses_record_being_scanned(self, text_file) -> None:
        remote = _BlockingRemote()
        session = _session(_Recorder(), screener=Screener(remote_scanner=remote))
        task = asyncio.create_task(session.files_added([text_file()]))
        while remote.calls == 0:
            await asyncio.sleep(0)

        [record] = session.records
        assert record.status is FileStatus.SCANNING
        assert session.scanning
        assert not session.can_create_archive
        assert not session.remove_file(record.id)

        remote.release.set()
        await task
        assert session.records[0].status is FileStatus.VALID

    @pytest.mark.asyncio
    async def test_reset_drops_late_scan_results(self, text_file) -> None:
        recorder = _Recorder()
        remote = _BlockingRemote()
        session = _session(recorder, screener=Screener(remote_scanner=remote))
        task = asyncio.create_task(session.files_added([text_file("a.txt"), text_file("b.txt")]))
        while remote.calls < 2:
            await asyncio.sleep(0)

        session.reset()
        assert session.records == ()
        assert not session.scanning

        remote.release.set()
        assert await task == []
        assert session.records == ()
        assert "2 file(s) passed security scan" not in recorder.messages("success")


# ---------------------------------------------------------------------------
# create_archive
# ---------------------------------------------------------------------------


class TestCreateArchive:
    @pytest.mark.asyncio
    async def test_duplicate_names_resolved_and_session_reset(self, text_file) -> None:
        recorder = _Recorder()
        session = _session(recorder)
        await session.files_added([text_file("a.txt", b"one\n"), text_file("a.txt", b"two\n")])

        result = await session.create_archive()

        assert result.resolved_names == ["a.txt", "a_1.txt"]
        assert len(recorder.completed) == 1
        assert SuccessMessages.ARCHIVE_CREATED in recorder.messages("success")
        assert session.records == ()
        assert not session.creating
        assert session.archive_progress == 0

    @pytest.mark.asyncio
    async def test_no_valid_files(self) -> None:
        recorder = _Recorder()
        session = _session(recorder)
        await session.files_added([InMemoryFile("x.exe", b"x", "")])

        with pytest.raises(ArchiveError, match=ErrorMessages.NO_VALID_FILES):
            await session.create_archive()
        assert recorder.completed == []

    @pytest.mark.asyncio
    async def test_failure_leaves_records_untouched(self, text_file) -> None:
        recorder = _Recorder()
        session = _session(recorder)
        records = await session.files_added([text_file()])

        # Swap the handle for one that fails on read at archive time
        class _Vanished:
            name = "notes.txt"
            size = 10
            mime_type = "text/plain"

            async def read(self) -> bytes:
                raise OSError("file vanished")

            async def read_head(self, n: int) -> bytes:
                raise OSError("file vanished")

        broken = dataclasses.replace(records[0], handle=_Vanished())
        session._records[broken.id] = broken

        with pytest.raises(ArchiveError, match=ErrorMessages.ZIP_ERROR):
            await session.create_archive()

        assert session.records == (broken,)
        assert not session.creating
        assert recorder.completed == []
        assert any(m.startswith(ErrorMessages.ZIP_ERROR) for m in recorder.messages("error"))

    @pytest.mark.asyncio
    async def test_progress_observed_while_creating(self, text_file) -> None:
        session = _session(_Recorder())
        await session.files_added([text_file("a.txt"), text_file("b.txt")])
        observed: list[tuple[bool, float]] = []

        original = session._set_archive_progress

        def spy(value: float, generation: int) -> None:
            original(value, generation)
            observed.append((session.creating, session.archive_progress))

        session._set_archive_progress = spy  # type: ignore[method-assign]
        await session.create_archive()

        assert observed
        assert all(creating for creating, _ in observed)
        assert observed[-1][1] == 100

    @pytest.mark.asyncio
    async def test_remove_refused_while_archive_is_built(self, text_file) -> None:
        session = _session(_Recorder())
        records = await session.files_added([text_file("a.txt"), text_file("b.txt")])
        removed: list[bool] = []

        original = session._set_archive_progress

        def remove_midway(value: float, generation: int) -> None:
            original(value, generation)
            removed.append(session.remove_file(records[1].id))

        session._set_archive_progress = remove_midway  # type: ignore[method-assign]
        result = await session.create_archive()

        assert removed
        assert not any(removed)
        assert result.resolved_names == ["a.txt", "b.txt"]
