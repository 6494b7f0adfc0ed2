"""Tests for job submission and status merging."""

from unittest.mock import MagicMock, patch

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from fileswift.errors import (
    InvalidRequest,
    InvalidTool,
    JobNotFound,
    JobStoreUnavailable,
    JobSubmissionError,
)
from fileswift.schemas.job import InputFile, JobStatus
from fileswift.services.job_gateway import CeleryTaskQueue, JobGateway, resolve_download_url
from fileswift.services.job_store import JobStore


@pytest.fixture
def store(fake_redis) -> JobStore:
    return JobStore(fake_redis, ttl_seconds=600)


@pytest.fixture
def gateway(store, fake_queue) -> JobGateway:
    return JobGateway(store, fake_queue)


@pytest.fixture
def files() -> list[InputFile]:
    return [InputFile(filename="in.pdf", path="/data/u1/in.pdf", size=3)]


class TestResolveDownloadUrl:
    def test_explicit_download_url(self):
        assert resolve_download_url("j", {"downloadUrl": "https://x/y.pdf"}) == "https://x/y.pdf"

    def test_result_key_maps_to_download_route(self):
        assert resolve_download_url("j1", {"resultKey": "out.pdf"}) == "/api/download/j1/out.pdf"

    def test_public_base_absolutizes(self):
        url = resolve_download_url("j1", "out.pdf", public_api_url="https://api.example.com/")
        assert url == "https://api.example.com/api/download/j1/out.pdf"

    def test_absolute_result_key(self):
        assert resolve_download_url("j", {"resultKey": "https://s3/x"}) == "https://s3/x"

    def test_result_key_is_url_encoded(self):
        url = resolve_download_url("j1", {"resultKey": "my report.pdf"})
        assert url == "/api/download/j1/my%20report.pdf"

    @pytest.mark.parametrize("result", [None, 42, {}, {"other": 1}])
    def test_no_url(self, result):
        assert resolve_download_url("j", result) is None


class TestSubmit:
    @pytest.mark.asyncio
    async def test_submit_records_and_enqueues(self, gateway, store, fake_queue, files):
        record = await gateway.submit("compress-pdf-for-email", files, {"level": "high"}, upload_id="u1")

        assert (await store.get(record.job_id)).status is JobStatus.PROCESSING
        job_id, payload = fake_queue.sent[0]
        assert job_id == record.job_id
        assert payload["tool_id"] == "compress-pdf-for-email"
        assert payload["processor"] == "compress-pdf"
        assert payload["data"] == {"level": "high"}
        assert payload["input_files"][0]["path"] == "/data/u1/in.pdf"

    @pytest.mark.asyncio
    async def test_invalid_tool_enqueues_nothing(self, gateway, fake_queue, files):
        with pytest.raises(InvalidTool):
            await gateway.submit("bogus", files)
        assert fake_queue.sent == []

    @pytest.mark.asyncio
    async def test_data_must_be_object(self, gateway, files):
        with pytest.raises(InvalidRequest) as exc_info:
            await gateway.submit("compress-pdf", files, data=["not", "an", "object"])
        assert exc_info.value.code == "INVALID_DATA"

    @pytest.mark.asyncio
    async def test_requires_files(self, gateway):
        with pytest.raises(InvalidRequest):
            await gateway.submit("compress-pdf", [])

    @pytest.mark.asyncio
    async def test_queue_outage(self, gateway, store, fake_queue, fake_redis, files):
        fake_queue.available = False

        with pytest.raises(JobSubmissionError) as exc_info:
            await gateway.submit("compress-pdf", files)

        assert exc_info.value.status_code == 503
        keys = [k async for k in fake_redis.scan_iter("job:*")]
        record = await store.get(keys[0].split(":", 1)[1])
        assert record.status is JobStatus.FAILED

    @pytest.mark.asyncio
    async def test_job_store_outage(self, gateway, store, fake_queue, files):
        with patch.object(store, "create", side_effect=RedisConnectionError("down")):
            with pytest.raises(JobSubmissionError) as exc_info:
                await gateway.submit("compress-pdf", files)

        assert exc_info.value.status_code == 503
        assert exc_info.value.code == "JOB_STORE_UNAVAILABLE"
        assert fake_queue.sent == []

    @pytest.mark.asyncio
    async def test_upload_mapping_recorded(self, gateway, store, files):
        record = await gateway.submit("compress-pdf", files, upload_id="u1")

        assert (await gateway.job_for_upload("u1")).job_id == record.job_id
        assert await gateway.job_for_upload("u2") is None

    @pytest.mark.asyncio
    async def test_mapping_not_recorded_when_queue_down(self, gateway, fake_queue, files):
        fake_queue.available = False

        with pytest.raises(JobSubmissionError):
            await gateway.submit("compress-pdf", files, upload_id="u1")

        assert await gateway.job_for_upload("u1") is None


class TestStatus:
    @pytest.mark.asyncio
    async def test_unknown_job(self, gateway):
        with pytest.raises(JobNotFound):
            await gateway.status("nope")

    @pytest.mark.asyncio
    async def test_processing_reports_progress(self, gateway, store, files):
        record = await gateway.submit("compress-pdf", files)
        await store.update(record.job_id, progress=30)

        status = await gateway.status(record.job_id)

        assert status.status is JobStatus.PROCESSING
        assert status.progress == 30
        assert status.download_url is None

    @pytest.mark.asyncio
    async def test_worker_success_merged_from_queue(self, gateway, fake_queue, files):
        record = await gateway.submit("compress-pdf", files)
        fake_queue.states[record.job_id] = ("SUCCESS", {"resultKey": "out.pdf"})

        status = await gateway.status(record.job_id)

        assert status.status is JobStatus.COMPLETED
        assert status.progress == 100
        assert status.download_url == f"/api/download/{record.job_id}/out.pdf"

    @pytest.mark.asyncio
    async def test_worker_failure_merged_from_queue(self, gateway, fake_queue, files):
        record = await gateway.submit("compress-pdf", files)
        fake_queue.states[record.job_id] = ("FAILURE", "Corrupt PDF")

        status = await gateway.status(record.job_id)

        assert status.status is JobStatus.FAILED
        assert status.error == "Corrupt PDF"

    @pytest.mark.asyncio
    async def test_completed_record_wins(self, gateway, store, fake_queue, files):
        record = await gateway.submit("compress-pdf", files)
        await store.update(record.job_id, status=JobStatus.COMPLETED, download_url="https://x/out.pdf")
        fake_queue.result = MagicMock(side_effect=AssertionError("queue should not be consulted"))

        status = await gateway.status(record.job_id)
        assert status.download_url == "https://x/out.pdf"

    @pytest.mark.asyncio
    async def test_queue_read_error_keeps_processing(self, gateway, fake_queue, files):
        record = await gateway.submit("compress-pdf", files)
        fake_queue.result = MagicMock(side_effect=ConnectionError("backend down"))

        status = await gateway.status(record.job_id)
        assert status.status is JobStatus.PROCESSING

    @pytest.mark.asyncio
    async def test_store_outage_is_503(self, gateway, store):
        with patch.object(store, "get", side_effect=RedisConnectionError("down")):
            with pytest.raises(JobStoreUnavailable) as exc_info:
                await gateway.status("job-1")

        assert exc_info.value.status_code == 503

    @pytest.mark.asyncio
    async def test_queue_outcome_reported_when_store_write_fails(self, gateway, store, fake_queue, files):
        record = await gateway.submit("compress-pdf", files)
        fake_queue.states[record.job_id] = ("SUCCESS", {"resultKey": "out.pdf"})

        with patch.object(store, "update", side_effect=RedisConnectionError("down")):
            status = await gateway.status(record.job_id)

        assert status.status is JobStatus.COMPLETED
        assert status.download_url == f"/api/download/{record.job_id}/out.pdf"


class TestCeleryTaskQueue:
    def test_send_task_by_name(self):
        app = MagicMock()
        queue = CeleryTaskQueue("fileswift.process_file", "file-processing", celery_app=app)

        queue.enqueue("job-1", {"job_id": "job-1"})

        app.send_task.assert_called_once_with(
            "fileswift.process_file",
            kwargs={"job_id": "job-1"},
            task_id="job-1",
            queue="file-processing",
        )

    def test_result_reads_async_result(self):
        app = MagicMock()
        app.AsyncResult.return_value.state = "SUCCESS"
        app.AsyncResult.return_value.result = {"resultKey": "k"}

        assert CeleryTaskQueue("t", "q", celery_app=app).result("job-1") == ("SUCCESS", {"resultKey": "k"})
        app.AsyncResult.assert_called_once_with("job-1")
