"""Client-side upload errors."""

from typing import Any, Optional

import httpx


class UploadError(Exception):
    """Base class for client upload failures."""


class UploadCancelled(UploadError):
    """The caller cancelled the operation."""

    def __init__(self, message: str = "Upload cancelled"):
        super().__init__(message)


class UploadTimeout(UploadError):
    """The whole operation exceeded its time budget."""


class UploadRejected(UploadError):
    """The server answered with a non-retryable (or final) error status."""

    def __init__(self, status_code: int, message: str, code: Optional[str] = None, body: Any = None):
        super().__init__(f"{status_code}: {message}")
        self.status_code = status_code
        self.message = message
        self.code = code
        self.body = body

    @classmethod
    def from_response(cls, response: httpx.Response) -> "UploadRejected":
        body: Any = None
        message = response.reason_phrase or "Request failed"
        code = None
        try:
            body = response.json()
        except ValueError:
            body = response.text
        if isinstance(body, dict):
            message = body.get("error") or message
            code = body.get("code")
        return cls(response.status_code, message, code=code, body=body)


class RetriesExhausted(UploadError):
    """Every attempt failed with a retryable error."""

    def __init__(self, attempts: int, last_error: BaseException):
        super().__init__(f"Gave up after {attempts} attempt(s): {last_error}")
        self.attempts = attempts
        self.last_error = last_error


class JobFailed(UploadError):
    """The server reported the processing job as failed."""

    def __init__(self, job_id: str, error: Optional[str]):
        super().__init__(f"Job {job_id} failed: {error or 'unknown error'}")
        self.job_id = job_id
        self.error = error


class PollTimeout(UploadError):
    """The job did not reach a terminal state before the poll deadline."""

    def __init__(self, job_id: str, timeout: float):
        super().__init__(f"Job {job_id} still running after {timeout}s")
        self.job_id = job_id
        self.timeout = timeout
