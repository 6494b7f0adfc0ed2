"""Service wiring for the upload subsystem."""

from dataclasses import dataclass
from typing import Optional

from fileswift.config import Settings
from fileswift.services.assembler import Assembler
from fileswift.services.chunk_store import ChunkStore
from fileswift.services.cleanup import SessionSweeper
from fileswift.services.completion import UploadCompleter
from fileswift.services.job_gateway import CeleryTaskQueue, JobGateway, TaskQueue
from fileswift.services.job_store import JobStore
from fileswift.services.rate_limiter import RateLimiter
from fileswift.services.upload_sessions import UploadSessionManager


@dataclass
class UploadServices:
    settings: Settings
    chunks: ChunkStore
    sessions: UploadSessionManager
    assembler: Assembler
    jobs: JobStore
    gateway: JobGateway
    completer: UploadCompleter
    limiter: RateLimiter
    sweeper: SessionSweeper


def build_services(
    settings: Settings,
    redis_client=None,
    queue: Optional[TaskQueue] = None,
) -> UploadServices:
    """Assemble the service graph. ``redis_client``/``queue`` are injectable for tests."""
    chunks = ChunkStore(
        settings.chunk_root,
        max_chunk_bytes=settings.max_chunk_size_mb * 1024 * 1024,
    )
    sessions = UploadSessionManager(
        chunks,
        ttl_seconds=settings.upload_session_ttl_seconds,
        max_total_chunks=settings.max_total_chunks,
    )
    assembler = Assembler(sessions, settings.assembled_root)
    jobs = JobStore(redis_client, ttl_seconds=settings.job_record_ttl_seconds)
    if queue is None:
        queue = CeleryTaskQueue(settings.processing_task_name, settings.processing_queue)
    gateway = JobGateway(jobs, queue, public_api_url=settings.public_api_url)
    return UploadServices(
        settings=settings,
        chunks=chunks,
        sessions=sessions,
        assembler=assembler,
        jobs=jobs,
        gateway=gateway,
        completer=UploadCompleter(assembler, gateway),
        limiter=RateLimiter(
            settings.rate_limit_cap,
            window_seconds=settings.rate_limit_window_seconds,
            redis_client=redis_client,
            store_timeout=settings.redis_socket_timeout,
        ),
        sweeper=SessionSweeper(sessions, settings.session_sweep_interval_seconds),
    )
