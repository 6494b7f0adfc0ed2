"""Job status polling endpoint."""

from fastapi import APIRouter, Depends, Request

from fileswift.api.deps import get_services
from fileswift.rate_limit import limiter
from fileswift.schemas.job import JobStatusResponse
from fileswift.services.container import UploadServices

router = APIRouter(prefix="/api/jobs", tags=["jobs"])


@router.get(
    "/{job_id}/status",
    response_model=JobStatusResponse,
    response_model_exclude_none=True,
)
@limiter.limit("120/minute")
async def get_job_status(
    request: Request,
    job_id: str,
    services: UploadServices = Depends(get_services),
) -> JobStatusResponse:
    """
    Current state of a processing job.

    ``progress`` is reported while processing, ``downloadUrl`` once completed
    and ``error`` once failed.
    """
    return await services.gateway.status(job_id)
