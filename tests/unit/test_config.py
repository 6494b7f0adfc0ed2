"""Tests for application settings."""

from unittest.mock import patch

import pytest

from fileswift.config import Settings, get_settings


class TestSettings:
    def test_redis_url(self):
        settings = Settings(redis_host="cache", redis_port=6380, redis_db=2)
        assert settings.redis_url == "redis://cache:6380/2"

    def test_redis_url_with_password(self):
        settings = Settings(redis_host="cache", redis_password="s3cret")
        assert settings.redis_url == "redis://:s3cret@cache:6379/0"

    def test_celery_urls_default_to_redis(self):
        settings = Settings(redis_host="cache")
        assert settings.get_celery_broker_url() == settings.redis_url
        assert settings.get_celery_result_backend() == settings.redis_url

    def test_celery_urls_override(self):
        settings = Settings(celery_broker_url="amqp://mq//", celery_result_backend="redis://other/1")
        assert settings.get_celery_broker_url() == "amqp://mq//"
        assert settings.get_celery_result_backend() == "redis://other/1"

    def test_upload_areas(self):
        settings = Settings(upload_dir="/srv/uploads")
        assert str(settings.chunk_root) == "/srv/uploads/chunks"
        assert str(settings.assembled_root) == "/srv/uploads/assembled"

    @pytest.mark.parametrize(
        "environment, explicit, expected",
        [
            ("development", None, 1000),
            ("production", None, 60),
            ("staging", None, 60),
            ("production", 5, 5),
        ],
    )
    def test_rate_limit_cap(self, environment, explicit, expected):
        settings = Settings(environment=environment, rate_limit_max_requests=explicit)
        assert settings.rate_limit_cap == expected


class TestGetSettings:
    def setup_method(self):
        get_settings.cache_clear()

    def teardown_method(self):
        get_settings.cache_clear()

    def test_production_requires_bypass_secret(self):
        with patch.dict("os.environ", {"ENVIRONMENT": "production"}):
            with pytest.raises(ValueError, match="RATE_LIMIT_BYPASS_TOKEN"):
                get_settings()

    def test_production_with_secret(self):
        env = {"ENVIRONMENT": "production", "RATE_LIMIT_BYPASS_TOKEN": "a-real-secret"}
        with patch.dict("os.environ", env):
            assert get_settings().rate_limit_bypass_token == "a-real-secret"
