"""Download of processed results."""

import asyncio

from fastapi import APIRouter, Depends, Request
from fastapi.responses import FileResponse

from fileswift.api.deps import get_services
from fileswift.rate_limit import limiter
from fileswift.services.container import UploadServices
from fileswift.services.results import resolve_result_file

router = APIRouter(prefix="/api/download", tags=["download"])


@router.get("/{job_id}/{file_path:path}")
@limiter.limit("60/minute")
async def download_result(
    request: Request,
    job_id: str,
    file_path: str,
    services: UploadServices = Depends(get_services),
) -> FileResponse:
    """Stream a result file written by the worker for ``job_id``."""
    path = await asyncio.to_thread(
        resolve_result_file, services.settings.output_root, job_id, file_path
    )
    return FileResponse(path, filename=path.name)
