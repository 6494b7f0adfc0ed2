"""Integration tests for job status polling."""

from unittest.mock import patch

import pytest
from httpx import AsyncClient
from redis.exceptions import ConnectionError as RedisConnectionError

from fileswift.schemas.job import InputFile, JobStatus


@pytest.fixture
def input_files() -> list[InputFile]:
    return [InputFile(filename="a.pdf", path="/tmp/a.pdf", size=1)]


class TestJobStatus:
    @pytest.mark.asyncio
    async def test_processing(self, test_client: AsyncClient, services, input_files):
        record = await services.gateway.submit("compress-pdf", input_files)
        await services.jobs.update(record.job_id, progress=45)

        response = await test_client.get(f"/api/jobs/{record.job_id}/status")

        assert response.status_code == 200
        assert response.json() == {"jobId": record.job_id, "status": "processing", "progress": 45}

    @pytest.mark.asyncio
    async def test_completed_by_worker(self, test_client: AsyncClient, services, input_files):
        record = await services.gateway.submit("compress-pdf", input_files)
        await services.jobs.update(
            record.job_id, status=JobStatus.COMPLETED, download_url="https://cdn.example.com/o.pdf"
        )

        body = (await test_client.get(f"/api/jobs/{record.job_id}/status")).json()

        assert body["status"] == "completed"
        assert body["downloadUrl"] == "https://cdn.example.com/o.pdf"
        assert "error" not in body

    @pytest.mark.asyncio
    async def test_completed_via_result_backend(
        self, test_client: AsyncClient, services, fake_queue, input_files
    ):
        record = await services.gateway.submit("compress-pdf", input_files)
        fake_queue.states[record.job_id] = ("SUCCESS", {"resultKey": "result.pdf"})

        body = (await test_client.get(f"/api/jobs/{record.job_id}/status")).json()

        assert body["status"] == "completed"
        assert body["downloadUrl"] == f"/api/download/{record.job_id}/result.pdf"

    @pytest.mark.asyncio
    async def test_failed(self, test_client: AsyncClient, services, input_files):
        record = await services.gateway.submit("compress-pdf", input_files)
        await services.jobs.update(record.job_id, status=JobStatus.FAILED, error="Password protected")

        body = (await test_client.get(f"/api/jobs/{record.job_id}/status")).json()

        assert body == {"jobId": record.job_id, "status": "failed", "error": "Password protected"}

    @pytest.mark.asyncio
    async def test_unknown_job(self, test_client: AsyncClient):
        response = await test_client.get("/api/jobs/does-not-exist/status")

        assert response.status_code == 404
        assert response.json() == {"error": "Job not found", "code": "JOB_NOT_FOUND"}

    @pytest.mark.asyncio
    async def test_job_store_outage(self, test_client: AsyncClient, services):
        with patch.object(services.jobs, "get", side_effect=RedisConnectionError("down")):
            response = await test_client.get("/api/jobs/job-1/status")

        assert response.status_code == 503
        assert response.json() == {"error": "Job store unavailable", "code": "JOB_STORE_UNAVAILABLE"}
