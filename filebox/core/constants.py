"""Default limits, allow-lists and user-facing messages for FileBox."""

from __future__ import annotations

from dataclasses import dataclass

# ---------------------------------------------------------------------------
# Limits
# ---------------------------------------------------------------------------

DEFAULT_MAX_FILE_SIZE = 10 * 1024 * 1024  # 10 MiB
DEFAULT_MAX_TOTAL_SIZE = 50 * 1024 * 1024  # 50 MiB

#: ``max_files`` value meaning "no limit".  Any value <= 0 is treated the same.
UNLIMITED_FILES = -1

#: Remote scan round-trip timeout.
DEFAULT_SCAN_TIMEOUT_MS = 30_000

#: Maximum number of screenings in flight at once.
CONCURRENT_SCAN_LIMIT = 3

#: Text files larger than this skip the content heuristic.
CONTENT_SCAN_MAX_BYTES = 1024 * 1024

#: DEFLATE level used for archive entries (medium).
ARCHIVE_COMPRESSION_LEVEL = 6


# ---------------------------------------------------------------------------
# Allowed file types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AllowedFileTypes:
    """Default allow-lists plus the MIME categories they are grouped into."""

    extensions: tuple[str, ...]
    mime_types: tuple[str, ...]
    categories: dict[str, tuple[str, ...]]


_DOCUMENT_TYPES = (
    "application/pdf",
    "text/plain",
    "text/html",
    "text/markdown",
    "application/json",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "application/vnd.openxmlformats-officedocument.presentationml.presentation",
)
_IMAGE_TYPES = (
    "image/jpeg",
    "image/png",
    "image/gif",
    "image/webp",
    "image/svg+xml",
    "image/bmp",
    "image/heif",
)
_AUDIO_TYPES = (
    "audio/mpeg",
    "audio/wav",
    "audio/ogg",
    "audio/aiff",
    "audio/aac",
    "audio/flac",
)
_VIDEO_TYPES = (
    "video/quicktime",
    "video/mp4",
    "video/x-msvideo",
    "video/x-ms-wmv",
    "video/x-matroska",
)

ALLOWED_FILE_TYPES = AllowedFileTypes(
    extensions=(
        # Documents
        ".pdf", ".txt", ".docx", ".xlsx", ".pptx", ".html", ".md", ".json",
        # Images
        ".jpg", ".jpeg", ".png", ".webp", ".gif", ".svg", ".bmp", ".heif",
        # Audio
        ".mp3", ".wav", ".ogg", ".aiff", ".aac", ".flac",
        # Video
        ".mov", ".mp4", ".avi", ".wmv", ".mkv",
    ),
    mime_types=_DOCUMENT_TYPES + _IMAGE_TYPES + _AUDIO_TYPES + _VIDEO_TYPES,
    categories={
        "documents": _DOCUMENT_TYPES,
        "images": _IMAGE_TYPES,
        "audio": _AUDIO_TYPES,
        "video": _VIDEO_TYPES,
    },
)


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------


class ErrorMessages:
    FILE_TOO_LARGE = "File size exceeds the maximum allowed size"
    TOTAL_SIZE_EXCEEDED = "Total archive size exceeds the maximum allowed size"
    INVALID_FILE_TYPE = "File type is not allowed"
    INVALID_EXTENSION = "File extension is not allowed"
    VIRUS_DETECTED = "File failed security scan"
    SCAN_ERROR = "Error occurred during file scanning"
    ZIP_ERROR = "Error occurred while creating archive"
    MAX_FILES_EXCEEDED = "Maximum number of files exceeded"
    NO_FILES = "No files to archive"
    NO_VALID_FILES = "No valid files to archive"


class SuccessMessages:
    FILE_VALIDATED = "File validated successfully"
    SCAN_PASSED = "File passed security scan"
    ARCHIVE_CREATED = "Archive created successfully"


# Screener detail strings
DETAIL_SCANNING_DISABLED = "Scanning disabled"
DETAIL_SUSPICIOUS_FILENAME = "Suspicious filename detected"
DETAIL_SIGNATURE_MISMATCH = "File signature does not match extension"
DETAIL_SUSPICIOUS_CONTENT = "Suspicious content detected"
DETAIL_SCAN_TIMEOUT = "Scan timeout"
