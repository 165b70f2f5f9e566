"""Scan result type and the remote scanner strategy interface.

Design principle — **fail-closed**: a remote scanner must never report a
file clean on error.  Implementations either return a failing
:class:`ScanResult` or raise :class:`~filebox.core.errors.TransportError`;
the :class:`~filebox.core.screener.Screener` turns the latter into a failing
result as well.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, runtime_checkable


@dataclass(frozen=True)
class ScanResult:
    """Outcome of screening a single file.

    Attributes:
        is_clean: ``True`` only when every check passed.
        error: Short user-facing error (e.g. "File failed security scan").
            ``None`` for clean results.
        details: Which check failed, or informational text for clean
            results ("File passed security scan", "Scanning disabled").
    """

    is_clean: bool
    error: str | None = None
    details: str | None = None

    @property
    def message(self) -> str:
        """Human-readable summary used as a record's error text."""
        if self.error and self.details:
            return f"{self.error}: {self.details}"
        return self.error or self.details or ""


@runtime_checkable
class RemoteScanner(Protocol):
    """Strategy for delegating the final verdict to an external service."""

    async def scan(self, name: str, data: bytes, mime_type: str) -> ScanResult:
        """Scan *data* and return a verdict.

        Raises:
            TransportError: On timeout, connection failure or a non-success
                response.  Never return a clean result in that case.
        """
        ...
