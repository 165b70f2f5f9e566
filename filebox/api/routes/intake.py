"""API routes for file intake.

Endpoints
---------
POST /v1/archive
    Accepts one or more multipart ``files``, runs them through a fresh
    :class:`~filebox.core.session.IntakeSession` (validation, screening) and
    returns the admitted files as a single ZIP container.  The resolved entry
    names are returned as a JSON list in the ``X-FileBox-Names`` header.  When
    no file is admitted the response is ``422`` with the per-file outcome.

POST /v1/scan
    Accepts one multipart ``file``, screens it with the local
    :class:`~filebox.core.screener.Screener` and answers in the remote-scan
    protocol (``{"isClean", "error", "details"}``), so one FileBox deployment
    can act as another's ``remote_endpoint``.
"""

from __future__ import annotations

import json
from typing import Annotated

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from fastapi.responses import JSONResponse, Response

from filebox.config import IntakeConfig
from filebox.core.archiver import generate_archive_filename
from filebox.core.constants import ErrorMessages
from filebox.core.errors import ArchiveError
from filebox.core.file_record import FileHandle, FileStatus, InMemoryFile
from filebox.core.screener import Screener
from filebox.core.session import IntakeSession

router = APIRouter(prefix="/v1", tags=["intake"])


def get_intake_config() -> IntakeConfig:
    return IntakeConfig.from_settings()


def get_screener(config: Annotated[IntakeConfig, Depends(get_intake_config)]) -> Screener:
    """Return the screener used by both endpoints.

    Overridden in tests via ``app.dependency_overrides``.
    """
    return Screener(config.scanner)


class UploadedFile:
    """A :class:`~filebox.core.file_record.FileHandle` over a multipart upload.

    ``size`` is the size the multipart parser recorded, so validation can
    refuse an oversized upload before any of its content is read.  Content
    is read from the spooled upload only when a later step asks for it.
    """

    def __init__(self, upload: UploadFile, size: int) -> None:
        self._upload = upload
        self.name = upload.filename or "upload"
        self.size = size
        self.mime_type = upload.content_type or ""

    async def read(self) -> bytes:
        await self._upload.seek(0)
        return await self._upload.read()

    async def read_head(self, n: int) -> bytes:
        await self._upload.seek(0)
        return await self._upload.read(n)


async def _to_handle(upload: UploadFile) -> FileHandle:
    if upload.size is not None:
        return UploadedFile(upload, upload.size)
    # No recorded size: fall back to buffering the content
    data = await upload.read()
    return InMemoryFile(
        name=upload.filename or "upload",
        data=data,
        mime_type=upload.content_type or "",
    )


@router.post("/archive")
async def archive_files(
    files: Annotated[list[UploadFile], File(description="Files to screen and archive")],
    config: Annotated[IntakeConfig, Depends(get_intake_config)],
    screener: Annotated[Screener, Depends(get_screener)],
) -> Response:
    """Validate, screen and archive the uploaded files."""
    handles = [await _to_handle(upload) for upload in files]
    session = IntakeSession(config, screener=screener)

    records = await session.files_added(handles)
    if not session.valid_file_count:
        return JSONResponse(
            status_code=422,
            content={
                "detail": ErrorMessages.NO_VALID_FILES,
                "files": [
                    {"name": r.name, "status": r.status.value, "error": r.error}
                    for r in records
                ],
            },
        )

    try:
        result = await session.create_archive()
    except ArchiveError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc

    rejected = [r.name for r in records if r.status is not FileStatus.VALID]
    headers = {
        "Content-Disposition": f'attachment; filename="{generate_archive_filename()}"',
        "X-FileBox-Names": json.dumps(result.resolved_names),
    }
    if rejected:
        headers["X-FileBox-Rejected"] = json.dumps(rejected)
    return Response(
        content=result.archive_bytes,
        media_type="application/zip",
        headers=headers,
    )


@router.post("/scan")
async def scan_file(
    file: Annotated[UploadFile, File(description="File to screen")],
    screener: Annotated[Screener, Depends(get_screener)],
) -> JSONResponse:
    """Screen one file and answer in the remote-scan protocol."""
    result = await screener.screen(await _to_handle(file))
    return JSONResponse(
        {
            "isClean": result.is_clean,
            "error": result.error,
            "details": result.details,
        }
    )
