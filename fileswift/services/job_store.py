"""Job record tracking service using Redis.

The API side uses :class:`JobStore` on the async pool. Workers report progress
and outcome through the module-level sync helpers, which share the same key
layout.
"""

import json
import logging
import time
from typing import Any, Optional
from uuid import uuid4

from fileswift.config import get_settings
from fileswift.schemas.job import InputFile, JobRecord, JobStatus
from fileswift.services.redis_manager import get_sync_client

logger = logging.getLogger(__name__)

# Redis key prefix for job records
JOB_KEY_PREFIX = "job:"
# Redis key prefix for upload_id -> job_id mapping
UPLOAD_JOB_KEY_PREFIX = "upload_job:"


def _job_key(job_id: str) -> str:
    return f"{JOB_KEY_PREFIX}{job_id}"


def _upload_key(upload_id: str) -> str:
    return f"{UPLOAD_JOB_KEY_PREFIX}{upload_id}"


def _apply_changes(raw: str, changes: dict[str, Any]) -> str:
    record = json.loads(raw)
    for name, value in changes.items():
        if value is None:
            continue
        record[name] = value.value if isinstance(value, JobStatus) else value
    record["updated_at"] = time.time()
    return json.dumps(record)


class JobStore:
    """Async access to job records."""

    def __init__(self, redis_client=None, ttl_seconds: Optional[int] = None):
        self._redis = redis_client
        self.ttl_seconds = ttl_seconds or get_settings().job_record_ttl_seconds

    async def _client(self):
        if self._redis is None:
            from fileswift.services.redis_manager import get_async_client
            self._redis = await get_async_client()
        return self._redis

    async def ping(self) -> bool:
        r = await self._client()
        return await r.ping()

    async def create(
        self,
        tool_id: str,
        input_files: list[InputFile],
        upload_id: Optional[str] = None,
        job_id: Optional[str] = None,
    ) -> JobRecord:
        """Create a new job record in ``processing`` state."""
        now = time.time()
        record = JobRecord(
            job_id=job_id or str(uuid4()),
            tool_id=tool_id,
            status=JobStatus.PROCESSING,
            upload_id=upload_id,
            input_files=input_files,
            created_at=now,
            updated_at=now,
        )
        r = await self._client()
        await r.setex(_job_key(record.job_id), self.ttl_seconds, record.model_dump_json())
        return record

    async def get(self, job_id: str) -> Optional[JobRecord]:
        r = await self._client()
        data = await r.get(_job_key(job_id))
        if not data:
            return None
        return JobRecord.model_validate_json(data)

    async def update(
        self,
        job_id: str,
        status: Optional[JobStatus] = None,
        progress: Optional[int] = None,
        download_url: Optional[str] = None,
        error: Optional[str] = None,
    ) -> Optional[JobRecord]:
        r = await self._client()
        key = _job_key(job_id)
        data = await r.get(key)
        if not data:
            return None
        updated = _apply_changes(
            data,
            {"status": status, "progress": progress, "download_url": download_url, "error": error},
        )
        await r.setex(key, self.ttl_seconds, updated)
        return JobRecord.model_validate_json(updated)

    async def remember_upload(self, upload_id: str, job_id: str) -> None:
        """Record which job an assembled upload turned into."""
        r = await self._client()
        await r.setex(_upload_key(upload_id), self.ttl_seconds, job_id)

    async def job_for_upload(self, upload_id: str) -> Optional[str]:
        r = await self._client()
        return await r.get(_upload_key(upload_id))


# ── Worker-side helpers (sync) ──────────────────────────────────────────────


def _update_sync(job_id: str, **changes: Any) -> None:
    r = get_sync_client()
    key = _job_key(job_id)

    data = r.get(key)
    if not data:
        logger.warning(f"Job {job_id} has no record; dropping update {sorted(changes)}")
        return

    r.setex(key, get_settings().job_record_ttl_seconds, _apply_changes(data, changes))


def update_job_progress(job_id: str, progress: int) -> None:
    _update_sync(job_id, progress=max(0, min(100, progress)))


def mark_job_completed(job_id: str, download_url: str) -> None:
    _update_sync(job_id, status=JobStatus.COMPLETED, progress=100, download_url=download_url)


def mark_job_failed(job_id: str, error: str) -> None:
    _update_sync(job_id, status=JobStatus.FAILED, error=error)
