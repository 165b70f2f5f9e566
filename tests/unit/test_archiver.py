"""Unit tests for filebox/core/archiver.py.

Archives are read back with :mod:`zipfile` to check their contents.

Coverage targets:
* resolve_unique_name — suffix before the last extension, counter
  increments, names without a dot.
* create_archive — entry names and bytes, resolved_names order, empty
  input rejected, read failures wrapped in ArchiveError with the cause
  chained, monotonic 0-100 progress split into two phases, byte-identical
  output for identical input.
* generate_archive_filename.
"""

from __future__ import annotations

import io
import zipfile
from datetime import date

import pytest

from filebox.core.archiver import (
    create_archive,
    generate_archive_filename,
    resolve_unique_name,
)
from filebox.core.constants import ErrorMessages
from filebox.core.errors import ArchiveError
from filebox.core.file_record import InMemoryFile


def _entries(archive_bytes: bytes) -> dict[str, bytes]:
    with zipfile.ZipFile(io.BytesIO(archive_bytes)) as zf:
        return {name: zf.read(name) for name in zf.namelist()}


class _BrokenFile:
    name = "broken.txt"
    size = 4
    mime_type = "text/plain"

    async def read(self) -> bytes:
        raise OSError("permission denied")

    async def read_head(self, n: int) -> bytes:
        raise OSError("permission denied")


# ---------------------------------------------------------------------------
# resolve_unique_name
# ---------------------------------------------------------------------------


class TestResolveUniqueName:
    def test_unused_name_kept(self) -> None:
        assert resolve_unique_name("report.pdf", set()) == "report.pdf"

    def test_suffix_before_extension(self) -> None:
        assert resolve_unique_name("report.pdf", {"report.pdf"}) == "report_1.pdf"

    def test_counter_increments_until_unique(self) -> None:
        used = {"report.pdf", "report_1.pdf", "report_2.pdf"}
        assert resolve_unique_name("report.pdf", used) == "report_3.pdf"

    def test_splits_at_last_dot(self) -> None:
        assert resolve_unique_name("data.tar.gz", {"data.tar.gz"}) == "data.tar_1.gz"

    def test_name_without_dot(self) -> None:
        assert resolve_unique_name("README", {"README"}) == "README_1"


# ---------------------------------------------------------------------------
# create_archive
# ---------------------------------------------------------------------------


class TestCreateArchive:
    @pytest.mark.asyncio
    async def test_duplicate_names_are_suffixed(self) -> None:
        files = [
            InMemoryFile("a.txt", b"first", "text/plain"),
            InMemoryFile("a.txt", b"second", "text/plain"),
            InMemoryFile("b.txt", b"third", "text/plain"),
        ]

        result = await create_archive(files)

        assert result.resolved_names == ["a.txt", "a_1.txt", "b.txt"]
        assert _entries(result.archive_bytes) == {
            "a.txt": b"first",
            "a_1.txt": b"second",
            "b.txt": b"third",
        }

    @pytest.mark.asyncio
    async def test_entries_are_deflated(self) -> None:
        result = await create_archive([InMemoryFile("big.txt", b"a" * 10_000, "text/plain")])
        with zipfile.ZipFile(io.BytesIO(result.archive_bytes)) as zf:
            info = zf.getinfo("big.txt")
        assert info.compress_type == zipfile.ZIP_DEFLATED
        assert info.compress_size < info.file_size
        assert info.date_time == (1980, 1, 1, 0, 0, 0)

    @pytest.mark.asyncio
    async def test_empty_input_rejected(self) -> None:
        with pytest.raises(ArchiveError, match=ErrorMessages.NO_FILES):
            await create_archive([])

    @pytest.mark.asyncio
    async def test_read_failure_wrapped(self) -> None:
        files = [InMemoryFile("a.txt", b"ok", "text/plain"), _BrokenFile()]
        with pytest.raises(ArchiveError, match=ErrorMessages.ZIP_ERROR) as exc_info:
            await create_archive(files)
        assert isinstance(exc_info.value.__cause__, OSError)

    @pytest.mark.asyncio
    async def test_identical_input_gives_identical_bytes(self) -> None:
        files = [InMemoryFile("a.txt", b"same", "text/plain"), InMemoryFile("b.png", b"\x89PNG", "image/png")]
        first = await create_archive(files)
        second = await create_archive(files)
        assert first.archive_bytes == second.archive_bytes


class TestArchiveProgress:
    @pytest.mark.asyncio
    async def test_progress_is_monotonic_and_ends_at_100(self) -> None:
        files = [InMemoryFile(f"f{i}.txt", b"x" * (i + 1) * 100, "text/plain") for i in range(5)]
        seen: list[float] = []

        await create_archive(files, on_progress=seen.append)

        assert seen == sorted(seen)
        assert all(0 <= value <= 100 for value in seen)
        assert seen[-1] == 100

    @pytest.mark.asyncio
    async def test_ingest_phase_reaches_50_before_compression(self) -> None:
        files = [InMemoryFile(f"f{i}.txt", b"data", "text/plain") for i in range(4)]
        seen: list[float] = []

        await create_archive(files, on_progress=seen.append)

        assert seen[:4] == [12.5, 25.0, 37.5, 50.0]
        assert all(value > 50 for value in seen[4:])

    @pytest.mark.asyncio
    async def test_zero_byte_entries_still_progress(self) -> None:
        seen: list[float] = []
        await create_archive(
            [InMemoryFile("a.txt", b""), InMemoryFile("b.txt", b"")],
            on_progress=seen.append,
        )
        assert seen[-1] == 100


class TestGenerateArchiveFilename:
    def test_default_prefix(self) -> None:
        assert generate_archive_filename(today=date(2026, 10, 17)) == "filebox-2026-10-17.zip"

    def test_custom_prefix(self) -> None:
        assert generate_archive_filename("intake", date(2025, 1, 2)) == "intake-2025-01-02.zip"
