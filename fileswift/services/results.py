"""Lookup of worker output files for download.

Workers write results to ``<output_root>/<job_id>/outputs/`` or directly into
``<output_root>/<job_id>/``. A requested path must resolve inside the job's
directory.
"""

import logging
import re
from pathlib import Path, PurePosixPath

from fileswift.errors import DownloadNotFound, InvalidRequest

logger = logging.getLogger(__name__)

_JOB_ID_RE = re.compile(r"^[A-Za-z0-9_-]{1,128}$")


def _invalid_path() -> InvalidRequest:
    return InvalidRequest("Invalid path", code="INVALID_PATH")


def resolve_result_file(output_root: Path, job_id: str, relative_path: str) -> Path:
    """Absolute path of a job's result file, or an error for missing/unsafe paths."""
    if not _JOB_ID_RE.match(job_id or ""):
        raise InvalidRequest("Invalid job id", code="INVALID_JOB_ID")

    relative = PurePosixPath(relative_path.replace("\\", "/"))
    # Security: prevent path traversal
    if not relative.parts or relative.is_absolute() or ".." in relative.parts:
        raise _invalid_path()

    job_dir = (Path(output_root) / job_id).resolve()
    for base in (job_dir / "outputs", job_dir):
        candidate = (base / relative).resolve()
        if not candidate.is_relative_to(job_dir):
            logger.warning(f"Blocked download outside job {job_id}: {relative_path}")
            raise _invalid_path()
        if candidate.is_file():
            return candidate
    raise DownloadNotFound()
