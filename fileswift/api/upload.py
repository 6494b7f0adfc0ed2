"""Chunked and direct upload endpoints."""

import json
import logging
from typing import Optional
from uuid import uuid4

from fastapi import APIRouter, Depends, File, Form, UploadFile, status

from fileswift.api.deps import get_services
from fileswift.errors import InvalidRequest, UploadConflict
from fileswift.schemas.upload import (
    ChunkList,
    ChunkReceipt,
    CompleteUploadRequest,
    InitUploadRequest,
    InitUploadResponse,
    UploadAccepted,
)
from fileswift.services.chunk_store import validate_index, validate_upload_id
from fileswift.services.container import UploadServices
from fileswift.services.direct_upload import remove_files, save_direct_upload
from fileswift.services.tool_registry import ensure_valid_tool, expects_pdf

logger = logging.getLogger(__name__)

router = APIRouter(tags=["upload"])


@router.post("/api/upload/chunk", response_model=ChunkReceipt)
async def upload_chunk(
    upload_id: str = Form(..., alias="uploadId"),
    index: int = Form(...),
    file: Optional[UploadFile] = File(None),
    chunk: Optional[UploadFile] = File(None),
    services: UploadServices = Depends(get_services),
) -> ChunkReceipt:
    """Store one chunk. Chunks may arrive in any order and may be re-sent."""
    validate_upload_id(upload_id)
    validate_index(index)
    part = file or chunk
    if part is None:
        raise InvalidRequest("No file chunk received", code="NO_FILE")

    try:
        received = await services.sessions.record_chunk(upload_id, index, part.file)
    except OSError as e:
        logger.error(f"Chunk upload failed for {upload_id}#{index}: {e}")
        raise InvalidRequest("Chunk could not be stored", code="CHUNK_ERROR") from e
    finally:
        await part.close()

    return ChunkReceipt(index=index, received=received)


@router.get("/api/upload/{upload_id}/chunks", response_model=ChunkList)
async def list_chunks(
    upload_id: str,
    services: UploadServices = Depends(get_services),
) -> ChunkList:
    """Sorted indices currently stored for the upload, for diagnostics and resume."""
    validate_upload_id(upload_id)
    return ChunkList(chunks=await services.sessions.list_chunks(upload_id))


@router.post(
    "/api/upload/init",
    response_model=InitUploadResponse,
    status_code=status.HTTP_201_CREATED,
)
async def init_upload(
    body: InitUploadRequest,
    services: UploadServices = Depends(get_services),
) -> InitUploadResponse:
    """Open a session ahead of the first chunk. Re-initialising keeps received chunks."""
    upload_id = validate_upload_id(body.upload_id or str(uuid4()))
    session = await services.sessions.init_session(
        upload_id, body.tool_id, body.filename, body.total_chunks
    )
    return InitUploadResponse(
        upload_id=upload_id,
        tool_id=body.tool_id,
        filename=body.filename,
        total_chunks=session.expected_total_chunks,
        received=sorted(session.received_chunk_indices),
    )


@router.post(
    "/api/upload/complete",
    response_model=UploadAccepted,
    status_code=status.HTTP_202_ACCEPTED,
)
async def complete_upload(
    body: CompleteUploadRequest,
    services: UploadServices = Depends(get_services),
) -> UploadAccepted:
    """Assemble all chunks in index order and submit the processing job."""
    logger.info(
        f"Completing upload {body.upload_id}: tool={body.tool_id}, chunks={body.total_chunks}"
    )
    job_id = await services.completer.complete(
        body.upload_id,
        body.tool_id,
        body.filename,
        body.total_chunks,
        body.data,
    )
    return UploadAccepted(upload_id=body.upload_id, job_id=job_id)


@router.post("/upload", response_model=UploadAccepted, status_code=status.HTTP_202_ACCEPTED)
@router.post("/api/upload", response_model=UploadAccepted, status_code=status.HTTP_202_ACCEPTED)
async def direct_upload(
    files: list[UploadFile] = File(...),
    tool_id: str = Form(..., alias="toolId"),
    data: Optional[str] = Form(None),
    upload_id: Optional[str] = Form(None, alias="uploadId"),
    services: UploadServices = Depends(get_services),
) -> UploadAccepted:
    """Single-request upload of one or more files, for payloads too small to chunk."""
    settings = services.settings
    try:
        ensure_valid_tool(tool_id)
        upload_id = validate_upload_id(upload_id or str(uuid4()))

        job_data: dict = {}
        if data:
            try:
                job_data = json.loads(data)
            except json.JSONDecodeError as e:
                raise InvalidRequest("data must be valid JSON", code="INVALID_DATA") from e
            if not isinstance(job_data, dict):
                raise InvalidRequest("data must be a JSON object", code="INVALID_DATA")

        if await services.gateway.job_for_upload(upload_id):
            raise UploadConflict(f"Upload {upload_id} has already been submitted")

        if len(files) > settings.max_upload_files:
            raise InvalidRequest(
                f"Too many files (max {settings.max_upload_files})",
                code="TOO_MANY_FILES",
            )

        saved = await save_direct_upload(
            upload_id,
            [(f.filename or "upload.bin", f.file) for f in files],
            settings.assembled_root,
            require_pdf=expects_pdf(tool_id),
            max_bytes=settings.max_upload_size_mb * 1024 * 1024,
        )
    finally:
        for f in files:
            await f.close()

    try:
        job = await services.gateway.submit(tool_id, saved, job_data, upload_id=upload_id)
    except Exception:
        remove_files(saved)
        raise

    logger.info(f"Direct upload {upload_id}: {len(saved)} file(s) for tool {tool_id}")
    return UploadAccepted(upload_id=upload_id, job_id=job.job_id, file_count=len(saved))
