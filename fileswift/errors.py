"""Error taxonomy for the upload service.

Every error raised by the services layer carries its HTTP status and a stable
error code; the API layer renders them as ``{"error": ..., "code": ...}``.
"""

from typing import Any, Optional


class UploadServiceError(Exception):
    """Base class for errors surfaced to API clients."""

    status_code = 500
    code = "INTERNAL_ERROR"

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.message, "code": self.code}


class InvalidRequest(UploadServiceError):
    """Malformed request: missing fields, bad ids, bad indices."""

    status_code = 400
    code = "INVALID_REQUEST"


class InvalidTool(UploadServiceError):
    """Tool id is not in the registry."""

    status_code = 400
    code = "INVALID_TOOL"

    def __init__(self, tool_id: str):
        super().__init__(f"Unknown tool: {tool_id!r}")
        self.tool_id = tool_id


class EmptyChunk(UploadServiceError):
    status_code = 400
    code = "EMPTY_CHUNK"


class ChunkTooLarge(UploadServiceError):
    status_code = 413
    code = "CHUNK_TOO_LARGE"


class ChunkNotFound(UploadServiceError):
    status_code = 404
    code = "CHUNK_NOT_FOUND"


class IncompleteUpload(UploadServiceError):
    """Completion requested while some chunk indices are missing.

    Recoverable: the client re-sends only ``missing`` and retries completion.
    """

    status_code = 400
    code = "MISSING_CHUNKS"
    # Response bodies list at most this many missing indices
    MAX_REPORTED = 100

    def __init__(self, missing: list[int]):
        preview = ", ".join(str(i) for i in missing[:10])
        if len(missing) > 10:
            preview += f" and {len(missing) - 10} more"
        super().__init__(f"Missing chunks: {preview}")
        self.missing = missing

    def to_dict(self) -> dict[str, Any]:
        body = super().to_dict()
        body["missing"] = self.missing[: self.MAX_REPORTED]
        body["missingCount"] = len(self.missing)
        return body


class AssemblyInProgress(UploadServiceError):
    status_code = 409
    code = "ASSEMBLY_IN_PROGRESS"

    def __init__(self, upload_id: str):
        super().__init__(f"Upload {upload_id} is already being assembled")
        self.upload_id = upload_id


class AssemblyFailure(UploadServiceError):
    """I/O failure while concatenating chunks. Chunks are kept for retry."""

    status_code = 500
    code = "MERGE_FAILED"

    def __init__(self, upload_id: str, reason: str = ""):
        super().__init__("Merge failed")
        self.upload_id = upload_id
        self.reason = reason


class JobNotFound(UploadServiceError):
    status_code = 404
    code = "JOB_NOT_FOUND"

    def __init__(self, job_id: str):
        super().__init__("Job not found")
        self.job_id = job_id


class JobSubmissionError(UploadServiceError):
    """The processing queue refused or could not be reached."""

    status_code = 503
    code = "QUEUE_UNAVAILABLE"


class UploadConflict(UploadServiceError):
    """The upload id is already bound to an assembled file or a job."""

    status_code = 409
    code = "UPLOAD_CONFLICT"


class JobStoreUnavailable(UploadServiceError):
    """Job records could not be read or written."""

    status_code = 503
    code = "JOB_STORE_UNAVAILABLE"

    def __init__(self, message: str = "Job store unavailable"):
        super().__init__(message)


class DownloadNotFound(UploadServiceError):
    status_code = 404
    code = "FILE_NOT_FOUND"

    def __init__(self):
        super().__init__("File not found")
