"""Completion of a chunked upload: assemble, submit, then drop the chunks."""

import logging
from typing import Any, Optional

from fileswift.errors import AssemblyInProgress, UploadConflict
from fileswift.schemas.job import InputFile, JobRecord
from fileswift.services.assembler import Assembler
from fileswift.services.chunk_store import validate_upload_id
from fileswift.services.direct_upload import remove_files
from fileswift.services.job_gateway import JobGateway
from fileswift.services.tool_registry import ensure_valid_tool

logger = logging.getLogger(__name__)


class UploadCompleter:
    """Drives ``/api/upload/complete``.

    The whole completion (assembly and submission) is guarded per upload id:
    a second call while one is running gets :class:`AssemblyInProgress`, and a
    call after success returns the job already created for that upload.

    Chunks outlive assembly until the job is recorded and queued. If
    submission fails the assembled file is removed and the chunks stay, so
    the client can simply retry completion.
    """

    def __init__(self, assembler: Assembler, gateway: JobGateway):
        self.assembler = assembler
        self.sessions = assembler.sessions
        self.gateway = gateway
        self._in_flight: set[str] = set()

    async def complete(
        self,
        upload_id: str,
        tool_id: str,
        filename: str,
        total_chunks: int,
        data: Optional[dict[str, Any]] = None,
    ) -> str:
        """Return the job id for the upload, creating the job if needed."""
        # Nothing touches disk for a bad request
        ensure_valid_tool(tool_id)
        validate_upload_id(upload_id)
        self.sessions.validate_total_chunks(total_chunks)

        if upload_id in self._in_flight:
            raise AssemblyInProgress(upload_id)
        self._in_flight.add(upload_id)
        self.sessions.pin(upload_id)
        try:
            existing = await self.gateway.job_for_upload(upload_id)
            if existing:
                return self._reuse(existing, tool_id)

            assembled = await self.assembler.assemble(
                upload_id, total_chunks, filename, keep_chunks=True
            )
            input_file = InputFile(
                filename=assembled.filename,
                path=str(assembled.path),
                size=assembled.size,
            )
            try:
                job = await self.gateway.submit(tool_id, [input_file], data, upload_id=upload_id)
            except Exception:
                remove_files([input_file])
                raise

            await self.sessions.discard(upload_id)
            return job.job_id
        finally:
            self._in_flight.discard(upload_id)
            self.sessions.unpin(upload_id)

    @staticmethod
    def _reuse(job: JobRecord, tool_id: str) -> str:
        if job.tool_id != tool_id:
            raise UploadConflict(
                f"Upload {job.upload_id} was already submitted to {job.tool_id}"
            )
        logger.info(f"Upload {job.upload_id} already completed as job {job.job_id}")
        return job.job_id
