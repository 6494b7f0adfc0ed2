"""Job submission gateway: validate, record, enqueue, and report job status."""

import asyncio
import logging
from typing import Any, Optional, Protocol
from urllib.parse import quote

from redis.exceptions import RedisError

from fileswift.errors import InvalidRequest, JobNotFound, JobStoreUnavailable, JobSubmissionError
from fileswift.schemas.job import InputFile, JobRecord, JobStatus, JobStatusResponse
from fileswift.services.job_store import JobStore
from fileswift.services.tool_registry import canonical_tool, ensure_valid_tool

logger = logging.getLogger(__name__)

# Celery result states that mean the worker is done
_SUCCESS_STATES = {"SUCCESS"}
_FAILURE_STATES = {"FAILURE", "REVOKED"}


class TaskQueue(Protocol):
    """What the gateway needs from the processing queue."""

    def enqueue(self, job_id: str, payload: dict[str, Any]) -> None: ...

    def result(self, job_id: str) -> tuple[str, Any]: ...


class CeleryTaskQueue:
    """Sends processing tasks by name to the external worker pool."""

    def __init__(self, task_name: str, queue: str, celery_app=None):
        if celery_app is None:
            from fileswift.celery_app import celery_app
        self.app = celery_app
        self.task_name = task_name
        self.queue = queue

    def enqueue(self, job_id: str, payload: dict[str, Any]) -> None:
        self.app.send_task(self.task_name, kwargs=payload, task_id=job_id, queue=self.queue)

    def result(self, job_id: str) -> tuple[str, Any]:
        async_result = self.app.AsyncResult(job_id)
        return async_result.state, async_result.result


def resolve_download_url(job_id: str, result: Any, public_api_url: str = "") -> Optional[str]:
    """Derive the client-facing download URL from a worker result payload.

    Absolute URLs pass through. A bare result key maps to
    ``/api/download/{job_id}/{key}``, absolutized with ``public_api_url``
    when one is configured.
    """
    if isinstance(result, str):
        result = {"resultKey": result}
    if not isinstance(result, dict):
        return None
    url = result.get("downloadUrl") or result.get("download_url")
    if url:
        return url
    key = result.get("resultKey") or result.get("result_key")
    if not key:
        return None
    if key.startswith(("http://", "https://")):
        return key
    path = f"/api/download/{job_id}/{quote(key.lstrip('/'))}"
    if public_api_url:
        return public_api_url.rstrip("/") + path
    return path


class JobGateway:
    def __init__(self, store: JobStore, queue: TaskQueue, public_api_url: str = ""):
        self.store = store
        self.queue = queue
        self.public_api_url = public_api_url

    async def submit(
        self,
        tool_id: str,
        input_files: list[InputFile],
        data: Optional[dict[str, Any]] = None,
        upload_id: Optional[str] = None,
    ) -> JobRecord:
        """Record a job and hand it to the queue without waiting for processing.

        Raises :class:`JobSubmissionError` when either the job store or the
        queue is unreachable; no job is running in that case.
        """
        ensure_valid_tool(tool_id)
        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise InvalidRequest("data must be a JSON object", code="INVALID_DATA")
        if not input_files:
            raise InvalidRequest("No input files", code="NO_FILE")

        try:
            record = await self.store.create(tool_id, input_files, upload_id=upload_id)
        except RedisError as e:
            logger.error(f"Could not record job for tool {tool_id} (upload={upload_id}): {e}")
            raise JobSubmissionError("Job store unavailable", code="JOB_STORE_UNAVAILABLE") from e

        payload = {
            "job_id": record.job_id,
            "tool_id": tool_id,
            "processor": canonical_tool(tool_id),
            "upload_id": upload_id,
            "input_files": [f.model_dump() for f in input_files],
            "data": data,
        }
        try:
            await asyncio.to_thread(self.queue.enqueue, record.job_id, payload)
        except Exception as e:
            logger.error(f"Failed to enqueue job {record.job_id} for tool {tool_id}: {e}")
            await self._mark_unqueued(record.job_id)
            raise JobSubmissionError("Processing queue unavailable") from e

        if upload_id:
            try:
                await self.store.remember_upload(upload_id, record.job_id)
            except RedisError as e:
                logger.warning(f"Could not record job mapping for upload {upload_id}: {e}")

        logger.info(
            f"Submitted job {record.job_id} (tool={tool_id}, files={len(input_files)}, upload={upload_id})"
        )
        return record

    async def _mark_unqueued(self, job_id: str) -> None:
        try:
            await self.store.update(job_id, status=JobStatus.FAILED, error="Queue unavailable")
        except RedisError as e:
            logger.warning(f"Could not mark job {job_id} failed: {e}")

    async def job_for_upload(self, upload_id: str) -> Optional[JobRecord]:
        """Job already created from ``upload_id``, if any."""
        try:
            job_id = await self.store.job_for_upload(upload_id)
            if not job_id:
                return None
            return await self.store.get(job_id)
        except RedisError as e:
            logger.error(f"Could not look up job for upload {upload_id}: {e}")
            raise JobStoreUnavailable() from e

    async def record(self, job_id: str) -> Optional[JobRecord]:
        """Stored job record, or ``None`` for an unknown id."""
        try:
            return await self.store.get(job_id)
        except RedisError as e:
            logger.error(f"Could not read job {job_id}: {e}")
            raise JobStoreUnavailable() from e

    async def status(self, job_id: str) -> JobStatusResponse:
        """Current status, merging the job record with the queue's result backend."""
        record = await self.record(job_id)
        if record is None:
            raise JobNotFound(job_id)

        if record.status is JobStatus.PROCESSING:
            record = await self._refresh_from_queue(record)

        if record.status is JobStatus.COMPLETED:
            return JobStatusResponse(
                job_id=job_id,
                status=record.status,
                progress=100,
                download_url=record.download_url,
            )
        if record.status is JobStatus.FAILED:
            return JobStatusResponse(job_id=job_id, status=record.status, error=record.error or "Processing failed")
        return JobStatusResponse(job_id=job_id, status=record.status, progress=record.progress)

    async def _refresh_from_queue(self, record: JobRecord) -> JobRecord:
        try:
            state, result = await asyncio.to_thread(self.queue.result, record.job_id)
        except Exception as e:
            logger.warning(f"Could not read queue state for job {record.job_id}: {e}")
            return record

        if state in _SUCCESS_STATES:
            changes = {
                "status": JobStatus.COMPLETED,
                "progress": 100,
                "download_url": resolve_download_url(record.job_id, result, self.public_api_url),
            }
        elif state in _FAILURE_STATES:
            changes = {"status": JobStatus.FAILED, "error": str(result) if result else state.lower()}
        else:
            return record

        try:
            updated = await self.store.update(record.job_id, **changes)
        except RedisError as e:
            # The queue outcome is still reported; the record catches up on the next poll
            logger.warning(f"Could not persist outcome of job {record.job_id}: {e}")
            updated = None
        return updated or record.model_copy(update=changes)
