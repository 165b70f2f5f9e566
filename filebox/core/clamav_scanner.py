"""ClamAV remote scanner — delegates the final verdict to a clamd daemon.

Streams the file bytes to ``clamd`` with the ``INSTREAM`` command over TCP,
so no shared filesystem is needed between FileBox and the daemon.

**Fail-closed:** connection failures, socket timeouts and clamd ``ERROR``
replies raise :class:`~filebox.core.errors.TransportError`, which the
screener reports as a scan error.  A file is never passed when the daemon
cannot give a verdict.

**Async compatibility:** the ``clamd`` library is synchronous.  Blocking
calls are dispatched to :func:`asyncio.to_thread` so the event loop keeps
serving sibling screenings.

Install with the ``clamav`` extra (``pip install filebox[clamav]``) and
configure ``remote_endpoint="clamd://clamav:3310"``.
"""

from __future__ import annotations

import asyncio
import io
import logging
import time
from typing import Any

import clamd

from filebox.core.constants import DEFAULT_SCAN_TIMEOUT_MS, ErrorMessages
from filebox.core.errors import TransportError
from filebox.core.scan_engine import ScanResult

logger = logging.getLogger(__name__)


def _parse_clamd_response(response: dict[str, tuple[str, str | None]]) -> ScanResult:
    """Turn a clamd ``{key: (code, detail)}`` reply into a :class:`ScanResult`.

    * ``("OK", None)``    — clean.
    * ``("FOUND", name)`` — infected; the signature name becomes the detail.
    * ``("ERROR", msg)``  — engine could not scan; raises ``TransportError``.
    """
    signatures: list[str] = []
    for key, (result_code, detail) in response.items():
        if result_code == "FOUND":
            signatures.append(detail or "unknown signature")
        elif result_code == "ERROR":
            logger.warning("ClamAV reported ERROR for %s: %s", key, detail)
            raise TransportError(f"ClamAV error: {detail}")
        elif result_code != "OK":
            raise TransportError(f"Unexpected ClamAV reply: {result_code}")

    if signatures:
        return ScanResult(
            is_clean=False,
            error=ErrorMessages.VIRUS_DETECTED,
            details=f"Signature detected: {', '.join(signatures)}",
        )
    return ScanResult(is_clean=True, details="No signature matched")


class ClamAVRemoteScanner:
    """Remote scanner backed by a clamd daemon reachable over TCP.

    A fresh connection is opened per scan; ``clamd`` does not multiplex
    requests over one socket.

    Args:
        host: Hostname of the clamd daemon.
        port: TCP port clamd listens on.
        timeout_ms: Socket timeout in milliseconds.
    """

    ENGINE_NAME = "clamav"

    def __init__(
        self,
        host: str = "clamav",
        port: int = 3310,
        timeout_ms: int = DEFAULT_SCAN_TIMEOUT_MS,
    ) -> None:
        self._host = host
        self._port = port
        self._timeout = timeout_ms / 1000

    async def scan(self, name: str, data: bytes, mime_type: str) -> ScanResult:
        start_ms = int(time.monotonic() * 1000)
        try:
            response = await asyncio.to_thread(self._sync_scan_stream, data)
        except Exception as exc:
            elapsed_ms = int(time.monotonic() * 1000) - start_ms
            logger.warning(
                "ClamAV instream scan failed file=%s host=%s port=%s error=%r duration_ms=%d",
                name,
                self._host,
                self._port,
                exc,
                elapsed_ms,
            )
            raise TransportError("ClamAV unavailable") from exc

        result = _parse_clamd_response(response)
        logger.info(
            "ClamAV instream scan complete file=%s clean=%s duration_ms=%d",
            name,
            result.is_clean,
            int(time.monotonic() * 1000) - start_ms,
        )
        return result

    async def ping(self) -> bool:
        """Return ``True`` if clamd answers ``PONG``; never raises."""
        try:
            return await asyncio.to_thread(self._sync_ping) == "PONG"
        except Exception as exc:
            logger.warning("ClamAV ping failed: %r", exc)
            return False

    def _get_client(self) -> clamd.ClamdNetworkSocket:
        return clamd.ClamdNetworkSocket(
            host=self._host,
            port=self._port,
            timeout=self._timeout,
        )

    def _sync_scan_stream(self, data: bytes) -> dict[str, Any]:
        return self._get_client().instream(io.BytesIO(data))

    def _sync_ping(self) -> str:
        return self._get_client().ping()
