"""HTTP remote scanner — delegates screening to an external endpoint.

The request is a ``POST`` carrying the raw file as multipart field ``file``.
The endpoint answers with JSON containing one of ``isClean``, ``safe`` or
``infected`` plus optional ``error`` and ``details`` (or ``message``).

**Fail-closed:** a timeout yields a failing result ("Scan timeout"); a
non-2xx status or transport failure raises
:class:`~filebox.core.errors.TransportError`; a response carrying none of
the verdict fields is treated as a failure rather than a pass.

Usage::

    from filebox.core.remote_scanner import build_remote_scanner

    scanner = build_remote_scanner("https://scan.example.com/v1/scan", timeout_ms=30_000)
    result = await scanner.scan("report.pdf", data, "application/pdf")
"""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import urlsplit

import httpx

from filebox.core.constants import (
    DEFAULT_SCAN_TIMEOUT_MS,
    DETAIL_SCAN_TIMEOUT,
    ErrorMessages,
)
from filebox.core.errors import TransportError
from filebox.core.scan_engine import RemoteScanner, ScanResult

logger = logging.getLogger(__name__)

_HTTP_SCHEMES = frozenset({"http", "https"})
_CLAMD_SCHEMES = frozenset({"clamd", "tcp"})
_DEFAULT_CLAMD_PORT = 3310


class HTTPRemoteScanner:
    """Remote scanner speaking the FileBox scan protocol over HTTP.

    Args:
        endpoint: Full URL of the scan endpoint.
        timeout_ms: Round-trip timeout in milliseconds.
        http_client: Optional shared :class:`httpx.AsyncClient`.  When
            ``None`` a client is created per request.
    """

    def __init__(
        self,
        endpoint: str,
        timeout_ms: int = DEFAULT_SCAN_TIMEOUT_MS,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._endpoint = endpoint
        self._timeout = timeout_ms / 1000
        self._http_client = http_client

    @property
    def endpoint(self) -> str:
        return self._endpoint

    async def scan(self, name: str, data: bytes, mime_type: str) -> ScanResult:
        try:
            payload = await self._post(name, data, mime_type)
        except httpx.TimeoutException:
            logger.warning(
                "Remote scan timed out after %.1fs: endpoint=%s file=%s",
                self._timeout,
                self._endpoint,
                name,
            )
            return ScanResult(
                is_clean=False,
                error=ErrorMessages.SCAN_ERROR,
                details=DETAIL_SCAN_TIMEOUT,
            )
        except httpx.HTTPStatusError as exc:
            status_code = exc.response.status_code
            logger.warning(
                "Remote scan failed (HTTP %d): endpoint=%s file=%s",
                status_code,
                self._endpoint,
                name,
            )
            raise TransportError(f"API returned {status_code}", status_code) from exc
        except httpx.RequestError as exc:
            logger.warning(
                "Remote scan network error: endpoint=%s file=%s error=%r",
                self._endpoint,
                name,
                exc,
            )
            raise TransportError(f"Scanner unreachable: {exc}") from exc

        return _parse_scan_response(payload)

    async def _post(self, name: str, data: bytes, mime_type: str) -> Any:
        files = {"file": (name, data, mime_type or "application/octet-stream")}
        if self._http_client is not None:
            response = await self._http_client.post(
                self._endpoint, files=files, timeout=self._timeout
            )
            response.raise_for_status()
            return response.json()
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            response = await client.post(self._endpoint, files=files)
            response.raise_for_status()
            return response.json()


def _parse_scan_response(payload: Any) -> ScanResult:
    """Map a remote JSON verdict onto a :class:`ScanResult`.

    ``isClean`` wins over ``safe`` which wins over ``infected``.  A payload
    with none of them is ambiguous and fails closed.
    """
    if not isinstance(payload, dict):
        return ScanResult(
            is_clean=False,
            error=ErrorMessages.SCAN_ERROR,
            details="Malformed scanner response",
        )

    if "isClean" in payload:
        is_clean = bool(payload["isClean"])
    elif "safe" in payload:
        is_clean = bool(payload["safe"])
    elif "infected" in payload:
        is_clean = not payload["infected"]
    else:
        return ScanResult(
            is_clean=False,
            error=ErrorMessages.SCAN_ERROR,
            details="Ambiguous scanner response",
        )

    error = payload.get("error")
    if not is_clean and not error:
        error = ErrorMessages.VIRUS_DETECTED
    return ScanResult(
        is_clean=is_clean,
        error=error if not is_clean else None,
        details=payload.get("details") or payload.get("message"),
    )


def build_remote_scanner(
    endpoint: str,
    timeout_ms: int = DEFAULT_SCAN_TIMEOUT_MS,
    http_client: httpx.AsyncClient | None = None,
) -> RemoteScanner:
    """Return a remote scanner for *endpoint*, selected by URL scheme.

    ``http``/``https`` → :class:`HTTPRemoteScanner`;
    ``clamd``/``tcp`` → :class:`~filebox.core.clamav_scanner.ClamAVRemoteScanner`
    (``clamd://host:3310``).

    Raises:
        ValueError: For an unsupported scheme.
    """
    parts = urlsplit(endpoint)
    scheme = parts.scheme.lower()
    if scheme in _HTTP_SCHEMES:
        return HTTPRemoteScanner(endpoint, timeout_ms=timeout_ms, http_client=http_client)
    if scheme in _CLAMD_SCHEMES:
        from filebox.core.clamav_scanner import ClamAVRemoteScanner

        return ClamAVRemoteScanner(
            host=parts.hostname or "localhost",
            port=parts.port or _DEFAULT_CLAMD_PORT,
            timeout_ms=timeout_ms,
        )
    raise ValueError(f"Unsupported remote scanner endpoint: {endpoint!r}")
