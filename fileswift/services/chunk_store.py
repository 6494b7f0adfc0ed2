"""Disk-backed chunk store for resumable uploads.

Layout::

    <chunk_root>/<upload_id>/part-<index>
    <chunk_root>/<upload_id>/session.json     (owned by upload_sessions)

Every chunk location is derived from ``(upload_id, index)`` alone, so the set
of received indices survives a process restart by listing the directory.
Writes land in a unique temp file and are published with ``os.replace``:
concurrent puts of different indices never touch the same path, and a put on
an existing index atomically replaces it.

All methods are blocking; async callers wrap them in ``asyncio.to_thread``.
"""

import logging
import os
import re
import shutil
import tempfile
from pathlib import Path
from typing import BinaryIO, Iterator, Optional

from fileswift.errors import ChunkNotFound, ChunkTooLarge, EmptyChunk, InvalidRequest

logger = logging.getLogger(__name__)

CHUNK_PREFIX = "part-"
_UPLOAD_ID_RE = re.compile(r"^[A-Za-z0-9_-]{1,128}$")
_COPY_BUFFER = 1024 * 1024


def validate_upload_id(upload_id: str) -> str:
    """Reject ids that could escape the chunk root."""
    if not upload_id or not _UPLOAD_ID_RE.match(upload_id):
        raise InvalidRequest("Invalid uploadId", code="INVALID_UPLOAD_ID")
    return upload_id


def validate_index(index: int) -> int:
    if isinstance(index, bool) or not isinstance(index, int) or index < 0:
        raise InvalidRequest("Chunk index must be a non-negative integer", code="INVALID_INDEX")
    return index


class ChunkStore:
    """Order-agnostic storage of upload chunks keyed by (upload_id, index)."""

    def __init__(self, root: Path, max_chunk_bytes: Optional[int] = None):
        self.root = Path(root)
        self.max_chunk_bytes = max_chunk_bytes

    def session_dir(self, upload_id: str) -> Path:
        return self.root / validate_upload_id(upload_id)

    def chunk_path(self, upload_id: str, index: int) -> Path:
        return self.session_dir(upload_id) / f"{CHUNK_PREFIX}{validate_index(index)}"

    def put(self, upload_id: str, index: int, data: bytes) -> int:
        """Store ``data`` as chunk ``index``, replacing any previous copy."""
        if not data:
            raise EmptyChunk("Empty chunk received")
        self._check_size(len(data))
        return self._publish(upload_id, index, lambda f: f.write(data))

    def put_stream(self, upload_id: str, index: int, stream: BinaryIO) -> int:
        """Copy a file-like object into chunk ``index`` without buffering it whole."""

        def _copy(dest: BinaryIO) -> int:
            written = 0
            while True:
                block = stream.read(_COPY_BUFFER)
                if not block:
                    break
                written += len(block)
                self._check_size(written)
                dest.write(block)
            if written == 0:
                raise EmptyChunk("Empty chunk received")
            return written

        return self._publish(upload_id, index, _copy)

    def get(self, upload_id: str, index: int) -> bytes:
        path = self.chunk_path(upload_id, index)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            raise ChunkNotFound(f"Chunk {index} of upload {upload_id} not found")

    def open(self, upload_id: str, index: int) -> BinaryIO:
        path = self.chunk_path(upload_id, index)
        try:
            return open(path, "rb")
        except FileNotFoundError:
            raise ChunkNotFound(f"Chunk {index} of upload {upload_id} not found")

    def list_indices(self, upload_id: str) -> set[int]:
        directory = self.session_dir(upload_id)
        if not directory.is_dir():
            return set()
        indices = set()
        for entry in os.scandir(directory):
            name = entry.name
            if not name.startswith(CHUNK_PREFIX) or not entry.is_file():
                continue
            suffix = name[len(CHUNK_PREFIX):]
            if suffix.isdigit():
                indices.add(int(suffix))
        return indices

    def delete_all(self, upload_id: str) -> None:
        """Remove every chunk and the session directory itself."""
        directory = self.session_dir(upload_id)
        shutil.rmtree(directory, ignore_errors=True)
        if directory.exists():
            logger.warning(f"Could not fully remove chunk directory {directory}")

    def session_ids(self) -> Iterator[str]:
        """Yield the ids of every upload with a directory on disk."""
        if not self.root.is_dir():
            return
        for entry in os.scandir(self.root):
            if entry.is_dir() and _UPLOAD_ID_RE.match(entry.name):
                yield entry.name

    # ─── Internals ──────────────────────────────────────────────────────

    def _check_size(self, size: int) -> None:
        if self.max_chunk_bytes is not None and size > self.max_chunk_bytes:
            raise ChunkTooLarge(
                f"Chunk exceeds maximum size of {self.max_chunk_bytes} bytes"
            )

    def _publish(self, upload_id: str, index: int, write) -> int:
        target = self.chunk_path(upload_id, index)
        target.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{target.name}.", suffix=".tmp", dir=target.parent)
        try:
            with os.fdopen(fd, "wb") as f:
                size = write(f)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, target)
        except BaseException:
            try:
                os.unlink(tmp_name)
            except FileNotFoundError:
                pass
            raise
        return size
