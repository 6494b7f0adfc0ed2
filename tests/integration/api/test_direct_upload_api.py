"""Integration tests for single-request uploads."""

import json
from pathlib import Path
from unittest.mock import patch

import pytest
from httpx import AsyncClient
from redis.exceptions import ConnectionError as RedisConnectionError


def pdf_files(pdf_bytes: bytes, count: int = 1) -> list:
    return [("files", (f"doc{i}.pdf", pdf_bytes, "application/pdf")) for i in range(count)]


class TestDirectUpload:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("path", ["/upload", "/api/upload"])
    async def test_accepted_on_both_paths(self, test_client: AsyncClient, fake_queue, pdf_bytes, path):
        response = await test_client.post(
            path,
            data={"toolId": "merge-pdf", "data": json.dumps({"order": [1, 0]})},
            files=pdf_files(pdf_bytes, 2),
        )

        assert response.status_code == 202
        body = response.json()
        assert body["fileCount"] == 2
        assert body["status"] == "processing"
        job_id, payload = fake_queue.sent[0]
        assert body["jobId"] == job_id
        assert payload["upload_id"] == body["uploadId"]
        assert payload["data"] == {"order": [1, 0]}

    @pytest.mark.asyncio
    async def test_client_supplied_upload_id(self, test_client: AsyncClient, pdf_bytes):
        response = await test_client.post(
            "/api/upload",
            data={"toolId": "compress-pdf", "uploadId": "direct-1"},
            files=pdf_files(pdf_bytes),
        )

        assert response.json()["uploadId"] == "direct-1"

    @pytest.mark.asyncio
    async def test_unknown_tool(self, test_client: AsyncClient, fake_queue, pdf_bytes, test_settings):
        response = await test_client.post(
            "/api/upload", data={"toolId": "bogus"}, files=pdf_files(pdf_bytes)
        )

        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_TOOL"
        assert fake_queue.sent == []
        assert not test_settings.assembled_root.exists()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("raw", ["{not json", "[1, 2]"])
    async def test_bad_data(self, test_client: AsyncClient, pdf_bytes, raw):
        response = await test_client.post(
            "/api/upload", data={"toolId": "compress-pdf", "data": raw}, files=pdf_files(pdf_bytes)
        )

        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_DATA"

    @pytest.mark.asyncio
    async def test_too_many_files(self, test_client: AsyncClient, pdf_bytes):
        response = await test_client.post(
            "/api/upload", data={"toolId": "merge-pdf"}, files=pdf_files(pdf_bytes, 6)
        )

        assert response.status_code == 400
        assert response.json()["code"] == "TOO_MANY_FILES"

    @pytest.mark.asyncio
    async def test_non_pdf_for_pdf_tool(self, test_client: AsyncClient, test_settings):
        response = await test_client.post(
            "/api/upload",
            data={"toolId": "compress-pdf"},
            files=[("files", ("fake.pdf", b"GIF89a", "application/pdf"))],
        )

        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_FILE_TYPE"
        assert list(test_settings.assembled_root.iterdir()) == []

    @pytest.mark.asyncio
    async def test_image_tool_accepts_images(self, test_client: AsyncClient):
        response = await test_client.post(
            "/api/upload",
            data={"toolId": "image-compressor"},
            files=[("files", ("photo.png", b"\x89PNG\r\n\x1a\n....", "image/png"))],
        )

        assert response.status_code == 202

    @pytest.mark.asyncio
    async def test_no_files(self, test_client: AsyncClient):
        response = await test_client.post("/api/upload", data={"toolId": "compress-pdf"})

        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_REQUEST"

    @pytest.mark.asyncio
    async def test_queue_unavailable_removes_files(
        self, test_client: AsyncClient, fake_queue, pdf_bytes, test_settings
    ):
        fake_queue.available = False

        response = await test_client.post(
            "/api/upload", data={"toolId": "compress-pdf"}, files=pdf_files(pdf_bytes)
        )

        assert response.status_code == 503
        assert list(test_settings.assembled_root.iterdir()) == []

    @pytest.mark.asyncio
    async def test_reused_upload_id_rejected(self, test_client: AsyncClient, fake_queue):
        first = await test_client.post(
            "/api/upload",
            data={"toolId": "image-compressor", "uploadId": "same"},
            files=[("files", ("a.jpg", b"first", "image/jpeg"))],
        )
        second = await test_client.post(
            "/api/upload",
            data={"toolId": "image-compressor", "uploadId": "same"},
            files=[("files", ("a.jpg", b"second", "image/jpeg"))],
        )

        assert first.status_code == 202
        assert second.status_code == 409
        assert second.json()["code"] == "UPLOAD_CONFLICT"
        assert len(fake_queue.sent) == 1
        input_path = Path(fake_queue.sent[0][1]["input_files"][0]["path"])
        assert input_path.read_bytes() == b"first"

    @pytest.mark.asyncio
    async def test_job_store_outage_removes_files(
        self, test_client: AsyncClient, services, fake_queue, pdf_bytes, test_settings
    ):
        with patch.object(services.jobs, "create", side_effect=RedisConnectionError("down")):
            response = await test_client.post(
                "/api/upload", data={"toolId": "compress-pdf"}, files=pdf_files(pdf_bytes)
            )

        assert response.status_code == 503
        assert response.json()["code"] == "JOB_STORE_UNAVAILABLE"
        assert list(test_settings.assembled_root.iterdir()) == []
        assert fake_queue.sent == []
