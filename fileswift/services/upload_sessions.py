"""Upload session tracking on top of the chunk store.

A session is the chunk directory of one upload plus a ``session.json``
document holding its metadata. Received indices are never duplicated into the
metadata: they are always read back from the chunk files, so concurrent chunk
requests only ever race on distinct files.
"""

import asyncio
import json
import logging
import os
import tempfile
import time
from collections import Counter
from dataclasses import dataclass, field
from typing import BinaryIO, Callable, Optional, Union

from fileswift.errors import InvalidRequest
from fileswift.services.chunk_store import ChunkStore
from fileswift.services.tool_registry import ensure_valid_tool

logger = logging.getLogger(__name__)

SESSION_FILE = "session.json"
DEFAULT_MAX_TOTAL_CHUNKS = 10_000


@dataclass
class UploadSession:
    """Metadata of one in-flight upload."""

    upload_id: str
    created_at: float
    tool_id: Optional[str] = None
    filename: Optional[str] = None
    expected_total_chunks: Optional[int] = None
    received_chunk_indices: set[int] = field(default_factory=set)


@dataclass
class CompletenessReport:
    complete: bool
    missing: list[int]
    received: int


def missing_indices(received: set[int], expected_total_chunks: int) -> list[int]:
    """Indices of ``0..expected_total_chunks-1`` not present in ``received``."""
    return sorted(set(range(expected_total_chunks)) - received)


class UploadSessionManager:
    """Tracks in-flight chunked uploads and reaps the abandoned ones."""

    def __init__(
        self,
        store: ChunkStore,
        ttl_seconds: int,
        clock: Callable[[], float] = time.time,
        max_total_chunks: int = DEFAULT_MAX_TOTAL_CHUNKS,
    ):
        self.store = store
        self.ttl_seconds = ttl_seconds
        self.max_total_chunks = max_total_chunks
        self._clock = clock
        # Uploads being completed; the sweeper leaves them alone
        self._pinned: Counter[str] = Counter()

    def validate_total_chunks(self, total_chunks: int) -> int:
        """Reject chunk counts no upload can legitimately have."""
        if isinstance(total_chunks, bool) or not isinstance(total_chunks, int) or total_chunks < 1:
            raise InvalidRequest("totalChunks must be a positive integer")
        if total_chunks > self.max_total_chunks:
            raise InvalidRequest(
                f"totalChunks exceeds the maximum of {self.max_total_chunks}",
                code="TOO_MANY_CHUNKS",
            )
        return total_chunks

    # ─── Chunk intake ───────────────────────────────────────────────────

    async def record_chunk(
        self,
        upload_id: str,
        index: int,
        data: Union[bytes, BinaryIO],
    ) -> int:
        """Store one chunk and return how many distinct chunks are now held."""
        if index >= self.max_total_chunks:
            raise InvalidRequest(
                f"Chunk index exceeds the maximum of {self.max_total_chunks - 1}",
                code="INVALID_INDEX",
            )
        return await asyncio.to_thread(self._record_chunk_sync, upload_id, index, data)

    def _record_chunk_sync(self, upload_id: str, index: int, data: Union[bytes, BinaryIO]) -> int:
        if isinstance(data, (bytes, bytearray, memoryview)):
            self.store.put(upload_id, index, bytes(data))
        else:
            self.store.put_stream(upload_id, index, data)
        self._ensure_session_file(upload_id)
        return len(self.store.list_indices(upload_id))

    async def init_session(
        self,
        upload_id: str,
        tool_id: str,
        filename: str,
        total_chunks: Optional[int] = None,
    ) -> UploadSession:
        """Explicitly open a session before any chunk arrives."""
        ensure_valid_tool(tool_id)
        if total_chunks is not None:
            self.validate_total_chunks(total_chunks)
        return await asyncio.to_thread(
            self._update_session_sync,
            upload_id,
            tool_id=tool_id,
            filename=filename,
            expected_total_chunks=total_chunks,
        )

    # ─── Queries ────────────────────────────────────────────────────────

    async def get_session(self, upload_id: str) -> Optional[UploadSession]:
        return await asyncio.to_thread(self._load_session_sync, upload_id)

    async def list_chunks(self, upload_id: str) -> list[int]:
        indices = await asyncio.to_thread(self.store.list_indices, upload_id)
        return sorted(indices)

    async def check_complete(self, upload_id: str, expected_total_chunks: int) -> CompletenessReport:
        """Compare received indices against ``{0..expected_total_chunks-1}``.

        A matching count is not enough: the exact index set must be present.
        """
        self.validate_total_chunks(expected_total_chunks)
        received = await asyncio.to_thread(self.store.list_indices, upload_id)
        missing = missing_indices(received, expected_total_chunks)
        return CompletenessReport(complete=not missing, missing=missing, received=len(received))

    # ─── Teardown ───────────────────────────────────────────────────────

    def pin(self, upload_id: str) -> None:
        self._pinned[upload_id] += 1

    def unpin(self, upload_id: str) -> None:
        self._pinned[upload_id] -= 1
        if self._pinned[upload_id] <= 0:
            del self._pinned[upload_id]

    async def discard(self, upload_id: str) -> None:
        await asyncio.to_thread(self.store.delete_all, upload_id)

    async def expire(self, now: Optional[float] = None) -> int:
        """Delete sessions older than the TTL that never completed."""
        now = self._clock() if now is None else now
        return await asyncio.to_thread(self._expire_sync, now)

    def _expire_sync(self, now: float) -> int:
        removed = 0
        for upload_id in list(self.store.session_ids()):
            if self._pinned[upload_id]:
                continue
            created_at = self._created_at(upload_id)
            if created_at is None or now - created_at <= self.ttl_seconds:
                continue
            self.store.delete_all(upload_id)
            removed += 1
            logger.info(f"Expired upload session {upload_id} (age {now - created_at:.0f}s)")
        return removed

    # ─── Metadata persistence ───────────────────────────────────────────

    def _session_file(self, upload_id: str):
        return self.store.session_dir(upload_id) / SESSION_FILE

    def _ensure_session_file(self, upload_id: str) -> None:
        """Create ``session.json`` if absent; the first creator fixes ``created_at``."""
        path = self._session_file(upload_id)
        path.parent.mkdir(parents=True, exist_ok=True)
        try:
            fd = os.open(path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            return
        with os.fdopen(fd, "w") as f:
            json.dump({"upload_id": upload_id, "created_at": self._clock()}, f)

    def _read_metadata(self, upload_id: str) -> Optional[dict]:
        path = self._session_file(upload_id)
        try:
            return json.loads(path.read_text())
        except FileNotFoundError:
            return None
        except (json.JSONDecodeError, OSError) as e:
            # Half-written by a crash; the directory mtime still bounds its age
            logger.warning(f"Unreadable session metadata for {upload_id}: {e}")
            return {}

    def _created_at(self, upload_id: str) -> Optional[float]:
        meta = self._read_metadata(upload_id)
        if meta and "created_at" in meta:
            return float(meta["created_at"])
        try:
            return self.store.session_dir(upload_id).stat().st_mtime
        except FileNotFoundError:
            return None

    def _load_session_sync(self, upload_id: str) -> Optional[UploadSession]:
        meta = self._read_metadata(upload_id)
        indices = self.store.list_indices(upload_id)
        if meta is None and not indices:
            return None
        meta = meta or {}
        created_at = meta.get("created_at")
        if created_at is None:
            created_at = self._created_at(upload_id) or self._clock()
        return UploadSession(
            upload_id=upload_id,
            created_at=float(created_at),
            tool_id=meta.get("tool_id"),
            filename=meta.get("filename"),
            expected_total_chunks=meta.get("expected_total_chunks"),
            received_chunk_indices=indices,
        )

    def _update_session_sync(self, upload_id: str, **fields) -> UploadSession:
        self._ensure_session_file(upload_id)
        meta = self._read_metadata(upload_id) or {"upload_id": upload_id, "created_at": self._clock()}
        meta.update({k: v for k, v in fields.items() if v is not None})

        path = self._session_file(upload_id)
        fd, tmp_name = tempfile.mkstemp(prefix=".session.", suffix=".tmp", dir=path.parent)
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(meta, f)
            os.replace(tmp_name, path)
        except BaseException:
            try:
                os.unlink(tmp_name)
            except FileNotFoundError:
                pass
            raise
        return self._load_session_sync(upload_id)
