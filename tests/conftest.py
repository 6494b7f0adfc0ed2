"""
Shared pytest fixtures for the upload service tests.

Provides:
- Settings pointing the upload area at a per-test temp directory
- FakeRedis (async) for job records and rate-limit counters
- A recording stand-in for the Celery task queue
- FastAPI test client over ASGITransport
"""

import os
from typing import AsyncGenerator

import fakeredis
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# Set test environment variables BEFORE importing app modules
# Only set defaults if not already set (allows overriding via environment)
os.environ.setdefault("REDIS_HOST", "localhost")
os.environ.setdefault("REDIS_PORT", "6379")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DEBUG", "false")

from fileswift.config import Settings
from fileswift.main import create_app
from fileswift.rate_limit import limiter
from fileswift.services.container import UploadServices, build_services

PDF_BYTES = b"%PDF-1.4\n1 0 obj\n<<>>\nendobj\ntrailer\n<<>>\n%%EOF\n"


class FakeQueue:
    """Records enqueued tasks and serves canned result-backend states."""

    def __init__(self):
        self.sent: list[tuple[str, dict]] = []
        self.states: dict[str, tuple[str, object]] = {}
        self.available = True

    def enqueue(self, job_id: str, payload: dict) -> None:
        if not self.available:
            raise ConnectionError("broker unreachable")
        self.sent.append((job_id, payload))

    def result(self, job_id: str):
        return self.states.get(job_id, ("PENDING", None))


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    """Test settings with predictable values."""
    return Settings(
        environment="test",
        upload_dir=str(tmp_path / "uploads"),
        redis_host="localhost",
        redis_port=6379,
        max_chunk_size_mb=1,
        max_upload_size_mb=2,
        max_upload_files=5,
        rate_limit_max_requests=1000,
        rate_limit_window_seconds=60,
        rate_limit_bypass_token="test-bypass-token",
        upload_session_ttl_seconds=3600,
        debug=False,
    )


@pytest.fixture
def fake_redis():
    """Async FakeRedis with its own server so tests never share state."""
    return fakeredis.FakeAsyncRedis(server=fakeredis.FakeServer(), decode_responses=True)


@pytest.fixture
def fake_queue() -> FakeQueue:
    return FakeQueue()


@pytest.fixture
def services(test_settings, fake_redis, fake_queue) -> UploadServices:
    return build_services(test_settings, redis_client=fake_redis, queue=fake_queue)


@pytest.fixture
def app(services):
    return create_app(services=services)


@pytest_asyncio.fixture
async def test_client(app) -> AsyncGenerator[AsyncClient, None]:
    """Create a test client bound to a freshly wired app."""
    limiter.reset()
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as client:
        yield client
    limiter.reset()


@pytest.fixture
def pdf_bytes() -> bytes:
    return PDF_BYTES
