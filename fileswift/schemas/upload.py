"""Request/response schemas for the upload endpoints."""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Accepts and emits camelCase field names on the wire."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ChunkReceipt(CamelModel):
    status: str = "ok"
    index: int
    received: int


class ChunkList(CamelModel):
    chunks: list[int]


class InitUploadRequest(CamelModel):
    upload_id: Optional[str] = None
    tool_id: str
    filename: str
    total_chunks: Optional[int] = Field(default=None, ge=1)


class InitUploadResponse(CamelModel):
    upload_id: str
    tool_id: str
    filename: str
    total_chunks: Optional[int] = None
    received: list[int] = Field(default_factory=list)


class CompleteUploadRequest(CamelModel):
    upload_id: str
    tool_id: str
    filename: str
    total_chunks: int = Field(ge=1)
    # Opaque per-tool options, passed to the worker unchanged
    data: Optional[dict[str, Any]] = None


class UploadAccepted(CamelModel):
    upload_id: str
    job_id: str
    status: str = "processing"
    file_count: int = 1


class UploadHealth(CamelModel):
    upload_ready: bool
