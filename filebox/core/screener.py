"""Screener — heuristic content screening of a single file.

:class:`Screener` runs the following steps in order, stopping at the first
failure:

1. **enabled**   — when scanning is disabled the file passes immediately
   ("Scanning disabled").  A configuration escape hatch, not a security
   guarantee.
2. **filename**  — null bytes, path traversal tokens, leading dot, or a
   dangerous executable extension anywhere in the name.
3. **signature** — the leading magic bytes must match the extension for the
   formats in :data:`FILE_SIGNATURES`.
4. **content**   — small text-like files are searched for script tags,
   ``javascript:`` URIs, inline event handlers, ``eval(`` and ``base64``.
5. **remote**    — when a :class:`~filebox.core.scan_engine.RemoteScanner` is
   configured, it delivers the final verdict.

Every step is wrapped in a named OpenTelemetry span under a root
``filebox.screen`` span.

**Fail-closed contract**: any exception raised while screening (including a
:class:`~filebox.core.errors.TransportError` from the remote scanner) yields
``ScanResult(is_clean=False, error="Error occurred during file scanning")``.
:meth:`Screener.screen` never raises.

The exception is the content step: a failure to *read* the text is logged
and treated as a pass.

Usage::

    from filebox.core.screener import Screener
    from filebox.config import ScannerConfig

    screener = Screener(ScannerConfig(enabled=True))
    result = await screener.screen(handle)
    if not result.is_clean:
        print(result.message)
"""

from __future__ import annotations

import logging
import re
import time
from typing import Awaitable, Callable

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode
from prometheus_client import Counter

from filebox.config import ScannerConfig
from filebox.core.constants import (
    CONTENT_SCAN_MAX_BYTES,
    DETAIL_SCANNING_DISABLED,
    DETAIL_SIGNATURE_MISMATCH,
    DETAIL_SUSPICIOUS_CONTENT,
    DETAIL_SUSPICIOUS_FILENAME,
    ErrorMessages,
    SuccessMessages,
)
from filebox.core.file_record import FileHandle
from filebox.core.remote_scanner import build_remote_scanner
from filebox.core.scan_engine import RemoteScanner, ScanResult

logger = logging.getLogger(__name__)

tracer = trace.get_tracer(
    "filebox.screener",
    schema_url="https://opentelemetry.io/schemas/1.11.0",
)

#: Incremented once per screened file.  ``verdict`` is "clean", "infected"
#: or "error".
scan_results_total = Counter(
    "filebox_scan_results_total",
    "Total number of screened files by verdict",
    ["verdict"],
)

# ---------------------------------------------------------------------------
# Heuristic tables
# ---------------------------------------------------------------------------

#: Substrings that flag an executable disguised inside a filename.
DANGEROUS_EXTENSIONS: tuple[str, ...] = (
    ".exe", ".bat", ".cmd", ".com", ".scr", ".pif", ".app", ".sh", ".run",
)

#: Accepted magic-byte signatures per extension.  Each signature is a tuple
#: of ``(offset, bytes)`` parts that must all match; any one signature
#: matching is enough.
FILE_SIGNATURES: dict[str, tuple[tuple[tuple[int, bytes], ...], ...]] = {
    "pdf": (((0, b"%PDF"),),),
    "png": (((0, b"\x89PNG"),),),
    "jpg": (((0, b"\xff\xd8\xff"),),),
    "gif": (((0, b"GIF8"),),),
    "zip": (((0, b"PK\x03\x04"),),),
    "mp3": (((0, b"\xff\xfb"),), ((0, b"ID3"),)),  # MPEG frame sync or ID3 tag
    "mp4": (((4, b"ftyp"),),),  # box size precedes the ftyp marker
    "webp": (((0, b"RIFF"), (8, b"WEBP")),),
}

#: Plain-text formats never held to a signature.
SIGNATURE_EXEMPT_EXTENSIONS = frozenset({"txt", "json", "md"})

_HEADER_BYTES = max(
    offset + len(magic)
    for signatures in FILE_SIGNATURES.values()
    for signature in signatures
    for offset, magic in signature
)

SUSPICIOUS_CONTENT_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"<script[^>]*>[\s\S]*?</script>", re.IGNORECASE),
    re.compile(r"javascript:", re.IGNORECASE),
    re.compile(r"on\w+\s*=", re.IGNORECASE),
    re.compile(r"eval\s*\(", re.IGNORECASE),
    re.compile(r"base64", re.IGNORECASE),
)


# ---------------------------------------------------------------------------
# Individual heuristics
# ---------------------------------------------------------------------------


def is_suspicious_filename(filename: str) -> bool:
    """Return ``True`` if *filename* looks malicious."""
    if "\0" in filename:
        return True
    if ".." in filename or "/" in filename or "\\" in filename:
        return True
    if filename.startswith("."):
        return True
    lowered = filename.lower()
    return any(ext in lowered for ext in DANGEROUS_EXTENSIONS)


def matches_signature(extension: str, header: bytes) -> bool:
    """Return ``True`` if *header* is acceptable for *extension*.

    Extensions without a known signature, and the plain-text exempt list,
    always match.
    """
    signatures = FILE_SIGNATURES.get(extension)
    if not signatures or extension in SIGNATURE_EXEMPT_EXTENSIONS:
        return True
    return any(
        all(header[offset:offset + len(magic)] == magic for offset, magic in signature)
        for signature in signatures
    )


def is_text_like(mime_type: str) -> bool:
    return mime_type.startswith("text/") or "json" in mime_type or "markdown" in mime_type


def contains_suspicious_content(text: str) -> bool:
    return any(pattern.search(text) for pattern in SUSPICIOUS_CONTENT_PATTERNS)


async def verify_file_signature(handle: FileHandle) -> bool:
    """Check the leading bytes of *handle* against its extension.

    An unreadable file is suspicious.
    """
    if "." not in handle.name:
        return True
    extension = handle.name.rsplit(".", 1)[-1].lower()
    try:
        header = await handle.read_head(_HEADER_BYTES)
    except Exception as exc:
        logger.warning("Signature check could not read file=%s error=%r", handle.name, exc)
        return False
    return matches_signature(extension, header)


async def scan_text_content(handle: FileHandle) -> bool:
    """Return ``False`` if a small text-like file contains a dangerous pattern.

    Large or non-text files are skipped.  A read failure passes (fail-open).
    """
    if handle.size > CONTENT_SCAN_MAX_BYTES:
        return True
    if not is_text_like(handle.mime_type):
        return True
    try:
        text = (await handle.read()).decode("utf-8", errors="replace")
    except Exception as exc:
        logger.warning(
            "Content scan could not read file=%s error=%r; letting it pass",
            handle.name,
            exc,
        )
        return True
    return not contains_suspicious_content(text)


# ---------------------------------------------------------------------------
# Screener
# ---------------------------------------------------------------------------


def _failed(details: str) -> ScanResult:
    return ScanResult(is_clean=False, error=ErrorMessages.VIRUS_DETECTED, details=details)


class Screener:
    """Runs the heuristic screening steps over one file at a time.

    The instance is stateless after construction and is shared by all
    concurrent screenings of a session.

    Args:
        config: Scanner configuration.  Defaults to ``ScannerConfig()``
            (enabled, no remote endpoint).
        remote_scanner: Optional remote verdict strategy.  When ``None`` and
            ``config.remote_endpoint`` is set, one is built from the endpoint
            with :func:`~filebox.core.remote_scanner.build_remote_scanner`.
    """

    def __init__(
        self,
        config: ScannerConfig | None = None,
        remote_scanner: RemoteScanner | None = None,
    ) -> None:
        self._config = config or ScannerConfig()
        if remote_scanner is None and self._config.remote_endpoint:
            remote_scanner = build_remote_scanner(
                self._config.remote_endpoint, timeout_ms=self._config.timeout_ms
            )
        self._remote_scanner = remote_scanner

    @property
    def config(self) -> ScannerConfig:
        return self._config

    async def screen(self, handle: FileHandle) -> ScanResult:
        """Screen *handle* and return its verdict.  Never raises."""
        start_ms = int(time.monotonic() * 1000)
        with tracer.start_as_current_span("filebox.screen") as span:
            span.set_attribute("file.name", handle.name)
            span.set_attribute("file.size_bytes", handle.size)
            span.set_attribute("file.mime_type", handle.mime_type)
            try:
                result = await self._screen(handle)
                verdict = "clean" if result.is_clean else "infected"
            except Exception as exc:
                span.record_exception(exc)
                span.set_status(Status(StatusCode.ERROR, str(exc)))
                logger.error("Screening failed file=%s error=%r", handle.name, exc)
                result = ScanResult(
                    is_clean=False,
                    error=ErrorMessages.SCAN_ERROR,
                    details=str(exc) or "Unknown error",
                )
                verdict = "error"
            span.set_attribute("scan.verdict", verdict)

        scan_results_total.labels(verdict=verdict).inc()
        elapsed_ms = int(time.monotonic() * 1000) - start_ms
        if result.is_clean:
            logger.info(
                "Screening complete file=%s verdict=%s duration_ms=%d",
                handle.name,
                verdict,
                elapsed_ms,
            )
        else:
            logger.warning(
                "Screening rejected file=%s verdict=%s reason=%s duration_ms=%d",
                handle.name,
                verdict,
                result.message,
                elapsed_ms,
            )
        return result

    async def _screen(self, handle: FileHandle) -> ScanResult:
        if not self._config.enabled:
            return ScanResult(is_clean=True, details=DETAIL_SCANNING_DISABLED)

        if is_suspicious_filename(handle.name):
            return _failed(DETAIL_SUSPICIOUS_FILENAME)

        if not await self._run_step("signature", verify_file_signature, handle):
            return _failed(DETAIL_SIGNATURE_MISMATCH)

        if not await self._run_step("content", scan_text_content, handle):
            return _failed(DETAIL_SUSPICIOUS_CONTENT)

        if self._remote_scanner is not None:
            with tracer.start_as_current_span("filebox.screen.remote"):
                data = await handle.read()
                return await self._remote_scanner.scan(handle.name, data, handle.mime_type)

        return ScanResult(is_clean=True, details=SuccessMessages.SCAN_PASSED)

    async def _run_step(
        self,
        step_name: str,
        step_fn: Callable[[FileHandle], Awaitable[bool]],
        handle: FileHandle,
    ) -> bool:
        with tracer.start_as_current_span(f"filebox.screen.{step_name}") as span:
            passed = await step_fn(handle)
            span.set_attribute("step.passed", passed)
            if not passed:
                logger.debug("Screening step '%s' failed file=%s", step_name, handle.name)
            return passed
