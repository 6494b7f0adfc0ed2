"""Tests for single-request upload spooling."""

import io
from pathlib import Path

import pytest

from fileswift.errors import InvalidRequest, UploadConflict
from fileswift.services.direct_upload import InvalidFileType, remove_files, save_files


class TestSaveFiles:
    def test_saves_each_file(self, tmp_path, pdf_bytes):
        saved = save_files(
            "u1",
            [("a.pdf", io.BytesIO(pdf_bytes)), ("../b.pdf", io.BytesIO(pdf_bytes))],
            tmp_path,
            require_pdf=True,
            max_bytes=1024,
        )

        assert [f.filename for f in saved] == ["a.pdf", "b.pdf"]
        assert saved[1].path == str(tmp_path / "u1" / "1-b.pdf")
        assert all(f.size == len(pdf_bytes) for f in saved)

    def test_rejects_non_pdf_for_pdf_tools(self, tmp_path, pdf_bytes):
        with pytest.raises(InvalidFileType) as exc_info:
            save_files(
                "u1",
                [("a.pdf", io.BytesIO(pdf_bytes)), ("b.pdf", io.BytesIO(b"PK\x03\x04zip"))],
                tmp_path,
                require_pdf=True,
                max_bytes=1024,
            )

        assert exc_info.value.code == "INVALID_FILE_TYPE"
        # All-or-nothing: the first file is removed too
        assert list(tmp_path.iterdir()) == []

    def test_size_cap(self, tmp_path):
        with pytest.raises(InvalidRequest) as exc_info:
            save_files("u1", [("a.png", io.BytesIO(b"x" * 2048))], tmp_path, require_pdf=False, max_bytes=1024)
        assert exc_info.value.code == "FILE_TOO_LARGE"
        assert list(tmp_path.iterdir()) == []

    def test_remove_files(self, tmp_path):
        saved = save_files("u1", [("a.png", io.BytesIO(b"img"))], tmp_path, require_pdf=False, max_bytes=1024)
        remove_files(saved)
        remove_files(saved)
        assert list(tmp_path.iterdir()) == []

    def test_reused_upload_id_keeps_first_files(self, tmp_path):
        first = save_files("same", [("a.png", io.BytesIO(b"first"))], tmp_path, require_pdf=False, max_bytes=1024)

        with pytest.raises(UploadConflict):
            save_files("same", [("a.png", io.BytesIO(b"second"))], tmp_path, require_pdf=False, max_bytes=1024)

        assert Path(first[0].path).read_bytes() == b"first"

    def test_failed_save_frees_upload_id(self, tmp_path):
        with pytest.raises(InvalidRequest):
            save_files("u1", [("a.png", io.BytesIO(b"x" * 2048))], tmp_path, require_pdf=False, max_bytes=1024)

        saved = save_files("u1", [("a.png", io.BytesIO(b"ok"))], tmp_path, require_pdf=False, max_bytes=1024)
        assert saved[0].size == 2
