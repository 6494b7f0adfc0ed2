"""Chunked and direct uploaders, and the job poller.

Both uploaders talk to the service over ``httpx.AsyncClient``. Pass a client
to share a connection pool (or an ASGI transport in tests); otherwise each
operation opens its own.
"""

import asyncio
import json
import logging
import math
import os
import random
import time
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Callable, Optional, Sequence, Union
from urllib.parse import urljoin

import httpx

from fileswift.client.backoff import compute_backoff
from fileswift.client.errors import (
    JobFailed,
    PollTimeout,
    RetriesExhausted,
    UploadCancelled,
    UploadRejected,
    UploadTimeout,
)

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 1024 * 1024
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_CHUNK_TIMEOUT = 60.0
DEFAULT_DIRECT_TIMEOUT = 180.0
DEFAULT_POLL_INTERVAL = 1.0
DEFAULT_POLL_TIMEOUT = 300.0

Source = Union[str, os.PathLike, bytes]
ProgressCallback = Callable[["UploadProgress"], None]
Sleep = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class UploadProgress:
    loaded: int
    total: int
    percent: int

    @classmethod
    def of(cls, loaded: int, total: int) -> "UploadProgress":
        percent = round(loaded / total * 100) if total else 100
        return cls(loaded=loaded, total=total, percent=percent)


@dataclass(frozen=True)
class UploadResult:
    upload_id: str
    job_id: str


@dataclass(frozen=True)
class JobOutcome:
    upload_id: str
    job_id: str
    status: str
    download_url: Optional[str] = None


class UploaderState(str, Enum):
    IDLE = "idle"
    UPLOADING = "uploading"
    COMPLETING = "completing"
    POLLING = "polling"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (UploaderState.COMPLETED, UploaderState.FAILED, UploaderState.CANCELLED)


_TRANSITIONS = {
    UploaderState.IDLE: {UploaderState.UPLOADING},
    UploaderState.UPLOADING: {UploaderState.COMPLETING},
    UploaderState.COMPLETING: {UploaderState.POLLING},
    UploaderState.POLLING: {UploaderState.COMPLETED},
}


class CancelToken:
    """Cooperative cancellation shared by an uploader and its poller.

    ``cancel()`` must be called from the event loop running the upload. An
    in-flight request or backoff sleep is interrupted immediately.
    """

    def __init__(self):
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise UploadCancelled()

    async def run(self, aw: Awaitable[Any]) -> Any:
        """Await ``aw`` unless cancellation happens first."""
        if self._event.is_set():
            if asyncio.iscoroutine(aw):
                aw.close()
            raise UploadCancelled()
        task = asyncio.ensure_future(aw)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            waiter.cancel()

        if task in done:
            return task.result()
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        raise UploadCancelled()


class _HttpOperation:
    """Client handling and retry loop shared by the uploaders and the poller."""

    def __init__(
        self,
        api_base: str,
        client: Optional[httpx.AsyncClient] = None,
        cancel_token: Optional[CancelToken] = None,
        sleep: Sleep = asyncio.sleep,
        rng: random.Random = random,
    ):
        self.api_base = api_base.rstrip("/")
        self.cancel_token = cancel_token or CancelToken()
        self._client = client
        self._sleep = sleep
        self._rng = rng

    def url(self, path: str) -> str:
        return f"{self.api_base}{path}"

    @asynccontextmanager
    async def _http(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._client is not None:
            yield self._client
        else:
            async with httpx.AsyncClient() as client:
                yield client

    async def _pause(self, seconds: float) -> None:
        await self.cancel_token.run(self._sleep(seconds))

    async def _send_with_retry(
        self,
        label: str,
        send: Callable[[], Awaitable[httpx.Response]],
        max_attempts: int,
        retry_statuses: frozenset,
    ) -> httpx.Response:
        """Run ``send`` until it succeeds, a status is not retryable, or attempts run out.

        Transport errors (timeouts included) and 5xx are always retried; a 4xx
        is retried only when listed in ``retry_statuses``.
        """
        attempt = 0
        while True:
            attempt += 1
            try:
                response = await self.cancel_token.run(send())
            except httpx.TransportError as e:
                error: BaseException = e
            else:
                if response.is_success:
                    return response
                status = response.status_code
                rejected = UploadRejected.from_response(response)
                if status < 500 and status not in retry_statuses:
                    raise rejected
                error = rejected

            if attempt >= max_attempts:
                raise RetriesExhausted(attempt, error)
            delay = compute_backoff(attempt, self._rng)
            logger.warning(
                f"{label} failed (attempt {attempt}/{max_attempts}): {error!r}. "
                f"Retrying in {round(delay)}ms"
            )
            await self._pause(delay / 1000)


class _Uploader(_HttpOperation):
    def __init__(self, *args, upload_timeout: Optional[float] = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.upload_timeout = upload_timeout
        self.state = UploaderState.IDLE
        self.result: Optional[UploadResult] = None

    def _transition(self, new_state: UploaderState) -> None:
        if new_state in (UploaderState.FAILED, UploaderState.CANCELLED):
            if self.state.is_terminal:
                raise RuntimeError(f"Cannot move from {self.state.value} to {new_state.value}")
        elif new_state not in _TRANSITIONS.get(self.state, set()):
            raise RuntimeError(f"Cannot move from {self.state.value} to {new_state.value}")
        self.state = new_state

    def cancel(self) -> None:
        self.cancel_token.cancel()

    async def start(
        self,
        on_progress: Optional[ProgressCallback] = None,
        data: Optional[dict[str, Any]] = None,
    ) -> UploadResult:
        """Upload and submit the job. Resolves once the server has accepted the job."""
        self._transition(UploaderState.UPLOADING)
        try:
            if self.upload_timeout is None:
                result = await self._upload(on_progress, data)
            else:
                try:
                    result = await asyncio.wait_for(self._upload(on_progress, data), self.upload_timeout)
                except asyncio.TimeoutError as e:
                    raise UploadTimeout(f"Upload did not finish within {self.upload_timeout}s") from e
        except UploadCancelled:
            self._transition(UploaderState.CANCELLED)
            logger.warning(f"[Upload {self.upload_id[:8]}] cancelled")
            raise
        except Exception as e:
            self._transition(UploaderState.FAILED)
            logger.error(f"[Upload {self.upload_id[:8]}] failed: {e}")
            raise
        self.result = result
        return result

    async def wait_for_job(self, poller: "JobPoller") -> JobOutcome:
        """Follow the submitted job to a terminal state."""
        if self.result is None:
            raise RuntimeError("start() has not completed")
        self._transition(UploaderState.POLLING)
        try:
            body = await poller.wait(self.result.job_id)
        except UploadCancelled:
            self._transition(UploaderState.CANCELLED)
            raise
        except Exception:
            self._transition(UploaderState.FAILED)
            raise
        self._transition(UploaderState.COMPLETED)

        download_url = body.get("downloadUrl")
        if download_url:
            download_url = urljoin(self.api_base + "/", download_url)
        return JobOutcome(
            upload_id=self.result.upload_id,
            job_id=self.result.job_id,
            status=body.get("status", "completed"),
            download_url=download_url,
        )

    async def _upload(self, on_progress, data) -> UploadResult:
        raise NotImplementedError


class ChunkedUploader(_Uploader):
    """Resumable upload of one file in fixed-size chunks.

    Already-stored chunks are skipped, so running a new uploader with the
    same ``upload_id`` resumes an interrupted upload.
    """

    # 408 and 429 are transient; any other 4xx will not change on retry
    RETRY_STATUSES = frozenset({408, 429})

    def __init__(
        self,
        source: Source,
        tool_id: str,
        api_base: str,
        upload_id: Optional[str] = None,
        filename: Optional[str] = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        chunk_timeout: float = DEFAULT_CHUNK_TIMEOUT,
        upload_timeout: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
        cancel_token: Optional[CancelToken] = None,
        sleep: Sleep = asyncio.sleep,
        rng: random.Random = random,
    ):
        super().__init__(
            api_base,
            client=client,
            cancel_token=cancel_token,
            sleep=sleep,
            rng=rng,
            upload_timeout=upload_timeout,
        )
        if chunk_size < 1:
            raise ValueError("chunk_size must be positive")
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")

        if isinstance(source, bytes):
            self._path = None
            self._data = source
            self.size = len(source)
            self.filename = filename or "upload.bin"
        else:
            self._path = os.fspath(source)
            self._data = None
            self.size = os.path.getsize(self._path)
            self.filename = filename or os.path.basename(self._path)
        if self.size == 0:
            raise ValueError("Cannot upload an empty file")

        self.tool_id = tool_id
        self.upload_id = upload_id or str(uuid.uuid4())
        self.chunk_size = chunk_size
        self.max_attempts = max_attempts
        self.chunk_timeout = chunk_timeout

    @property
    def total_chunks(self) -> int:
        return math.ceil(self.size / self.chunk_size)

    def chunk_length(self, index: int) -> int:
        start = index * self.chunk_size
        return min(start + self.chunk_size, self.size) - start

    def _read_chunk_sync(self, index: int) -> bytes:
        start = index * self.chunk_size
        with open(self._path, "rb") as f:
            f.seek(start)
            return f.read(self.chunk_size)

    async def read_chunk(self, index: int) -> bytes:
        if self._data is not None:
            start = index * self.chunk_size
            return self._data[start:start + self.chunk_size]
        return await asyncio.to_thread(self._read_chunk_sync, index)

    async def uploaded_chunks(self, client: httpx.AsyncClient) -> set[int]:
        """Indices the server already holds. Any failure means "none"."""
        try:
            response = await self.cancel_token.run(
                client.get(self.url(f"/api/upload/{self.upload_id}/chunks"), timeout=self.chunk_timeout)
            )
        except httpx.TransportError as e:
            logger.warning(f"[Upload {self.upload_id[:8]}] resume check failed: {e!r}")
            return set()
        if not response.is_success:
            return set()
        try:
            chunks = response.json().get("chunks") or []
        except ValueError:
            return set()
        return {i for i in chunks if isinstance(i, int) and 0 <= i < self.total_chunks}

    async def _upload(self, on_progress, data) -> UploadResult:
        async with self._http() as client:
            already = await self.uploaded_chunks(client)
            loaded = sum(self.chunk_length(i) for i in already)
            if already:
                logger.info(
                    f"[Upload {self.upload_id[:8]}] resuming with {len(already)}/{self.total_chunks} chunks stored"
                )
                if on_progress:
                    on_progress(UploadProgress.of(loaded, self.size))

            for index in range(self.total_chunks):
                self.cancel_token.raise_if_cancelled()
                if index in already:
                    continue
                chunk = await self.read_chunk(index)
                await self._send_chunk(client, index, chunk)
                loaded += len(chunk)
                if on_progress:
                    on_progress(UploadProgress.of(loaded, self.size))

            self._transition(UploaderState.COMPLETING)
            logger.info(f"[Upload {self.upload_id[:8]}] all chunks sent, completing")
            return await self._complete(client, data)

    async def _send_chunk(self, client: httpx.AsyncClient, index: int, chunk: bytes) -> None:
        def send() -> Awaitable[httpx.Response]:
            return client.post(
                self.url("/api/upload/chunk"),
                data={"uploadId": self.upload_id, "index": str(index)},
                files={"file": (self.filename, chunk, "application/octet-stream")},
                timeout=self.chunk_timeout,
            )

        await self._send_with_retry(
            f"[Upload {self.upload_id[:8]}] chunk {index}",
            send,
            self.max_attempts,
            self.RETRY_STATUSES,
        )

    async def _complete(self, client: httpx.AsyncClient, data) -> UploadResult:
        response = await self.cancel_token.run(
            client.post(
                self.url("/api/upload/complete"),
                json={
                    "uploadId": self.upload_id,
                    "toolId": self.tool_id,
                    "filename": self.filename,
                    "totalChunks": self.total_chunks,
                    "data": data or {},
                },
                timeout=self.chunk_timeout,
            )
        )
        if not response.is_success:
            raise UploadRejected.from_response(response)
        return UploadResult(upload_id=self.upload_id, job_id=response.json()["jobId"])


class DirectUploader(_Uploader):
    """Single multipart request carrying every file, for small payloads."""

    RETRY_STATUSES = frozenset({429})

    def __init__(
        self,
        files: Sequence[Union[Source, tuple[str, bytes]]],
        tool_id: str,
        api_base: str,
        upload_id: Optional[str] = None,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        request_timeout: float = DEFAULT_DIRECT_TIMEOUT,
        upload_timeout: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
        cancel_token: Optional[CancelToken] = None,
        sleep: Sleep = asyncio.sleep,
        rng: random.Random = random,
    ):
        super().__init__(
            api_base,
            client=client,
            cancel_token=cancel_token,
            sleep=sleep,
            rng=rng,
            upload_timeout=upload_timeout,
        )
        if not files:
            raise ValueError("At least one file is required")
        self.files = list(files)
        self.tool_id = tool_id
        self.upload_id = upload_id or str(uuid.uuid4())
        self.max_attempts = max_attempts
        self.request_timeout = request_timeout

    @staticmethod
    def _load_sync(item) -> tuple[str, bytes]:
        if isinstance(item, tuple):
            return item
        if isinstance(item, bytes):
            return "upload.bin", item
        path = os.fspath(item)
        with open(path, "rb") as f:
            return os.path.basename(path), f.read()

    async def _upload(self, on_progress, data) -> UploadResult:
        parts = [await asyncio.to_thread(self._load_sync, item) for item in self.files]
        total = sum(len(content) for _, content in parts)
        if on_progress:
            on_progress(UploadProgress.of(0, total))

        form = {"toolId": self.tool_id, "uploadId": self.upload_id}
        if data:
            form["data"] = json.dumps(data)

        async with self._http() as client:
            def send() -> Awaitable[httpx.Response]:
                return client.post(
                    self.url("/api/upload"),
                    data=form,
                    files=[("files", (name, content, "application/octet-stream")) for name, content in parts],
                    timeout=self.request_timeout,
                )

            response = await self._send_with_retry(
                f"[Upload {self.upload_id[:8]}] direct upload",
                send,
                self.max_attempts,
                self.RETRY_STATUSES,
            )

        if on_progress:
            on_progress(UploadProgress.of(total, total))
        self._transition(UploaderState.COMPLETING)
        body = response.json()
        logger.info(f"[Upload {self.upload_id[:8]}] accepted as job {body.get('jobId')}")
        return UploadResult(upload_id=body.get("uploadId", self.upload_id), job_id=body["jobId"])


class JobPoller(_HttpOperation):
    """Polls ``/api/jobs/{jobId}/status`` until the job is done."""

    def __init__(
        self,
        api_base: str,
        interval: float = DEFAULT_POLL_INTERVAL,
        timeout: float = DEFAULT_POLL_TIMEOUT,
        request_timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
        cancel_token: Optional[CancelToken] = None,
        sleep: Sleep = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        super().__init__(api_base, client=client, cancel_token=cancel_token, sleep=sleep)
        self.interval = interval
        self.timeout = timeout
        self.request_timeout = request_timeout
        self._clock = clock

    async def status(self, client: httpx.AsyncClient, job_id: str) -> Optional[dict]:
        """One status read. ``None`` when the answer is transient (network, 429, 5xx)."""
        try:
            response = await self.cancel_token.run(
                client.get(self.url(f"/api/jobs/{job_id}/status"), timeout=self.request_timeout)
            )
        except httpx.TransportError as e:
            logger.warning(f"Status check for job {job_id} failed: {e!r}")
            return None
        if response.status_code == 429 or response.status_code >= 500:
            logger.warning(f"Status check for job {job_id} returned {response.status_code}")
            return None
        if not response.is_success:
            raise UploadRejected.from_response(response)
        return response.json()

    async def wait(self, job_id: str) -> dict:
        """Return the final status body of a completed job.

        Raises :class:`JobFailed` if the server reports failure and
        :class:`PollTimeout` once ``timeout`` seconds pass without either.
        """
        deadline = self._clock() + self.timeout
        async with self._http() as client:
            while True:
                body = await self.status(client, job_id)
                if body is not None:
                    state = body.get("status")
                    if state == "completed":
                        return body
                    if state == "failed":
                        raise JobFailed(job_id, body.get("error"))
                if self._clock() >= deadline:
                    raise PollTimeout(job_id, self.timeout)
                await self._pause(self.interval)


async def upload_and_wait(
    source: Union[Source, Sequence[Union[Source, tuple[str, bytes]]]],
    tool_id: str,
    api_base: str,
    data: Optional[dict[str, Any]] = None,
    on_progress: Optional[ProgressCallback] = None,
    client: Optional[httpx.AsyncClient] = None,
    cancel_token: Optional[CancelToken] = None,
    poll_interval: float = DEFAULT_POLL_INTERVAL,
    poll_timeout: float = DEFAULT_POLL_TIMEOUT,
    **uploader_options: Any,
) -> JobOutcome:
    """Upload, submit and wait for the job.

    A single file (path or bytes) goes through :class:`ChunkedUploader`; a
    list of files goes through :class:`DirectUploader`. A relative
    ``downloadUrl`` is resolved against ``api_base``.
    """
    cancel_token = cancel_token or CancelToken()
    uploader: _Uploader
    if isinstance(source, (bytes, str, os.PathLike)):
        uploader = ChunkedUploader(
            source, tool_id, api_base, client=client, cancel_token=cancel_token, **uploader_options
        )
    else:
        uploader = DirectUploader(
            source, tool_id, api_base, client=client, cancel_token=cancel_token, **uploader_options
        )

    poller = JobPoller(
        api_base,
        interval=poll_interval,
        timeout=poll_timeout,
        client=client,
        cancel_token=cancel_token,
        sleep=uploader._sleep,
    )
    await uploader.start(on_progress=on_progress, data=data)
    return await uploader.wait_for_job(poller)

