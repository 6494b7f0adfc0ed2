"""Single-request (non-chunked) uploads: spool each file into the assembled area."""

import asyncio
import logging
import os
import tempfile
from pathlib import Path
from typing import BinaryIO

from fileswift.errors import InvalidRequest
from fileswift.schemas.job import InputFile
from fileswift.services.assembler import claim_output_dir, release_output_dir, sanitize_filename

logger = logging.getLogger(__name__)

PDF_MAGIC = b"%PDF"


class InvalidFileType(InvalidRequest):
    code = "INVALID_FILE_TYPE"


def _save_one(stream: BinaryIO, destination: Path, require_pdf: bool, max_bytes: int) -> int:
    fd, tmp_name = tempfile.mkstemp(prefix=".direct-", suffix=".tmp", dir=destination.parent)
    written = 0
    try:
        with os.fdopen(fd, "wb") as out:
            head = stream.read(len(PDF_MAGIC))
            if require_pdf and head != PDF_MAGIC:
                raise InvalidFileType("Invalid file type: Not a PDF")
            out.write(head)
            written = len(head)
            while True:
                block = stream.read(1024 * 1024)
                if not block:
                    break
                written += len(block)
                if written > max_bytes:
                    raise InvalidRequest(
                        f"File exceeds maximum size of {max_bytes // (1024 * 1024)} MB",
                        code="FILE_TOO_LARGE",
                    )
                out.write(block)
        os.replace(tmp_name, destination)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        raise
    return written


def save_files(
    upload_id: str,
    files: list[tuple[str, BinaryIO]],
    output_dir: Path,
    require_pdf: bool,
    max_bytes: int,
) -> list[InputFile]:
    """Write ``(filename, stream)`` pairs under ``output_dir/<upload_id>``; all-or-nothing.

    An upload id that already owns an output directory is refused with
    :class:`UploadConflict`.
    """
    upload_dir = claim_output_dir(output_dir, upload_id)
    saved: list[InputFile] = []
    try:
        for position, (filename, stream) in enumerate(files):
            safe_name = sanitize_filename(filename)
            destination = upload_dir / f"{position}-{safe_name}"
            size = _save_one(stream, destination, require_pdf, max_bytes)
            saved.append(InputFile(filename=safe_name, path=str(destination), size=size))
    except BaseException:
        remove_files(saved)
        release_output_dir(upload_dir)
        raise
    return saved


async def save_direct_upload(
    upload_id: str,
    files: list[tuple[str, BinaryIO]],
    output_dir: Path,
    require_pdf: bool,
    max_bytes: int,
) -> list[InputFile]:
    saved = await asyncio.to_thread(save_files, upload_id, files, output_dir, require_pdf, max_bytes)
    logger.info(f"Saved {len(saved)} file(s) for direct upload {upload_id}")
    return saved


def remove_files(files: list[InputFile]) -> None:
    """Delete submitted inputs and the per-upload directories they leave empty."""
    for item in files:
        path = Path(item.path)
        path.unlink(missing_ok=True)
        release_output_dir(path.parent)

