"""Concatenate the chunks of a finished upload into one file.

Output layout::

    <output_dir>/<upload_id>/<sanitised filename>

Each upload id owns its directory exclusively, so two uploads can never be
assembled onto the same path.
"""

import asyncio
import contextlib
import logging
import os
import re
import shutil
import tempfile
from dataclasses import dataclass
from pathlib import Path

from fileswift.errors import (
    AssemblyFailure,
    AssemblyInProgress,
    ChunkNotFound,
    IncompleteUpload,
    UploadConflict,
)
from fileswift.services.chunk_store import ChunkStore, validate_upload_id
from fileswift.services.upload_sessions import UploadSessionManager

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]")
MAX_FILENAME_LENGTH = 100


def sanitize_filename(filename: str, default: str = "upload.bin") -> str:
    """Strip directories and anything outside ``[A-Za-z0-9._-]``."""
    name = (filename or "").replace("\\", "/").rsplit("/", 1)[-1]
    name = _UNSAFE_CHARS.sub("_", name).lstrip(".")
    if not name:
        return default
    if len(name) > MAX_FILENAME_LENGTH:
        stem, dot, ext = name.rpartition(".")
        if dot and 0 < len(ext) <= 10:
            name = stem[: MAX_FILENAME_LENGTH - len(ext) - 1] + "." + ext
        else:
            name = name[:MAX_FILENAME_LENGTH]
    return name


def claim_output_dir(output_dir: Path, upload_id: str) -> Path:
    """Create the upload's output directory, refusing one that already exists."""
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    upload_dir = output_dir / validate_upload_id(upload_id)
    try:
        upload_dir.mkdir()
    except FileExistsError:
        raise UploadConflict(f"Upload {upload_id} has already been submitted") from None
    return upload_dir


def release_output_dir(upload_dir: Path) -> None:
    """Remove an upload's output directory if nothing is left in it."""
    with contextlib.suppress(OSError):
        upload_dir.rmdir()


@dataclass
class AssembledFile:
    upload_id: str
    filename: str
    path: Path
    size: int
    chunk_count: int


class Assembler:
    """Turns a complete set of chunks into a single file under ``output_dir``.

    At most one assembly runs per upload id at a time; a concurrent request
    for the same upload is rejected with :class:`AssemblyInProgress`.
    """

    def __init__(self, sessions: UploadSessionManager, output_dir: Path):
        self.sessions = sessions
        self.store: ChunkStore = sessions.store
        self.output_dir = Path(output_dir)
        self._in_flight: set[str] = set()

    def is_assembling(self, upload_id: str) -> bool:
        return upload_id in self._in_flight

    async def assemble(
        self,
        upload_id: str,
        expected_total_chunks: int,
        filename: str,
        keep_chunks: bool = False,
    ) -> AssembledFile:
        """Write the assembled file; chunks are deleted afterwards unless ``keep_chunks``."""
        validate_upload_id(upload_id)
        if upload_id in self._in_flight:
            raise AssemblyInProgress(upload_id)

        # Claimed before the first await, so the check above is race-free
        self._in_flight.add(upload_id)
        self.sessions.pin(upload_id)
        try:
            report = await self.sessions.check_complete(upload_id, expected_total_chunks)
            if not report.complete:
                logger.info(
                    f"Upload {upload_id} incomplete: {len(report.missing)} of "
                    f"{expected_total_chunks} chunks missing"
                )
                raise IncompleteUpload(report.missing)

            safe_name = sanitize_filename(filename)
            try:
                destination = await asyncio.to_thread(
                    self._concatenate, upload_id, expected_total_chunks, safe_name
                )
            except (OSError, ChunkNotFound) as e:
                logger.error(f"Merge failed for upload {upload_id}: {e}")
                raise AssemblyFailure(upload_id, str(e)) from e

            size = destination.stat().st_size
            if not keep_chunks:
                await self.sessions.discard(upload_id)
            logger.info(
                f"Assembled upload {upload_id}: {expected_total_chunks} chunks, "
                f"{size} bytes -> {destination.name}"
            )
            return AssembledFile(
                upload_id=upload_id,
                filename=safe_name,
                path=destination,
                size=size,
                chunk_count=expected_total_chunks,
            )
        finally:
            self._in_flight.discard(upload_id)
            self.sessions.unpin(upload_id)

    def _concatenate(self, upload_id: str, total: int, filename: str) -> Path:
        """Write chunks ``0..total-1`` in index order; publish only on success."""
        upload_dir = claim_output_dir(self.output_dir, upload_id)
        destination = upload_dir / filename
        fd, tmp_name = tempfile.mkstemp(prefix=".assembling-", suffix=".tmp", dir=upload_dir)
        try:
            with os.fdopen(fd, "wb") as out:
                for index in range(total):
                    with self.store.open(upload_id, index) as part:
                        shutil.copyfileobj(part, out)
                out.flush()
                os.fsync(out.fileno())
            os.replace(tmp_name, destination)
        except BaseException:
            with contextlib.suppress(FileNotFoundError):
                os.unlink(tmp_name)
            release_output_dir(upload_dir)
            raise
        return destination
