"""Shared pytest configuration and fixtures for FileBox tests.

Pins the scanner environment before any filebox module is imported so that
``filebox.config.get_settings()`` never picks up a remote endpoint from the
developer's shell.
"""
from __future__ import annotations

import os

# Set before any filebox module is imported
os.environ["FILEBOX_SCANNER_ENABLED"] = "true"
os.environ.pop("FILEBOX_SCANNER_REMOTE_ENDPOINT", None)
os.environ.setdefault("FILEBOX_LOG_LEVEL", "INFO")

import pytest  # noqa: E402

from filebox.config import get_settings  # noqa: E402
from filebox.core.file_record import InMemoryFile  # noqa: E402

PNG_HEADER = b"\x89PNG\r\n\x1a\n"
PDF_HEADER = b"%PDF-1.7\n"


@pytest.fixture(autouse=True)
def _clear_settings_cache():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def text_file():
    """Factory for small, clean ``text/plain`` files."""

    def _make(name: str = "notes.txt", body: bytes = b"meeting notes for monday\n") -> InMemoryFile:
        return InMemoryFile(name=name, data=body, mime_type="text/plain")

    return _make


@pytest.fixture
def png_file():
    """Factory for ``image/png`` files carrying a real PNG signature."""

    def _make(name: str = "photo.png", size: int = 64) -> InMemoryFile:
        body = PNG_HEADER + b"\x00" * max(0, size - len(PNG_HEADER))
        return InMemoryFile(name=name, data=body, mime_type="image/png")

    return _make
