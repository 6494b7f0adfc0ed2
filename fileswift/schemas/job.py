"""Job record schemas shared by the gateway, the status API and the worker."""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class JobStatus(str, Enum):
    """Job states. Queued/uploading belong to the upload phase, not to jobs."""
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not JobStatus.PROCESSING


class InputFile(BaseModel):
    filename: str
    path: str
    size: Optional[int] = None


class JobRecord(BaseModel):
    """Stored form of a job, kept in Redis under ``job:{job_id}``."""
    job_id: str
    tool_id: str
    status: JobStatus = JobStatus.PROCESSING
    progress: int = 0
    upload_id: Optional[str] = None
    input_files: list[InputFile] = Field(default_factory=list)
    download_url: Optional[str] = None
    error: Optional[str] = None
    created_at: float
    updated_at: float


class JobStatusResponse(BaseModel):
    """Body of ``GET /api/jobs/{jobId}/status``."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    job_id: str
    status: JobStatus
    progress: Optional[int] = None
    download_url: Optional[str] = None
    error: Optional[str] = None
