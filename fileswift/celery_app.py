"""Celery application configuration.

The API only produces tasks: processing runs in an external worker that
registers ``settings.processing_task_name`` and reports back through
``fileswift.services.job_store``.
"""

import logging

from celery import Celery
from celery.signals import worker_shutdown

from fileswift.config import get_settings

settings = get_settings()

celery_app = Celery(
    "fileswift",
    broker=settings.get_celery_broker_url(),
    backend=settings.get_celery_result_backend(),
)

celery_app.conf.update(
    # Task settings
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    # Task execution settings
    task_acks_late=True,  # Acknowledge after task completes
    task_reject_on_worker_lost=True,  # Requeue if worker dies
    worker_prefetch_multiplier=1,
    # Result backend settings
    result_expires=86400,  # Results expire after 24 hours
    task_default_queue=settings.processing_queue,
    task_routes={settings.processing_task_name: {"queue": settings.processing_queue}},
    # Fail fast when the broker is down instead of hanging the request
    task_publish_retry_policy={
        "max_retries": 2,
        "interval_start": 0,
        "interval_step": 0.5,
        "interval_max": 1,
    },
)


@worker_shutdown.connect
def cleanup_on_shutdown(sender=None, **kwargs):
    """Close shared Redis connection pool on worker shutdown."""
    logger = logging.getLogger(__name__)
    try:
        from fileswift.services.redis_manager import close_all_sync
        close_all_sync()
        logger.info("Redis connection pool closed on worker shutdown")
    except Exception as e:
        logger.warning(f"Error closing Redis pool on shutdown: {e}")


if __name__ == "__main__":
    celery_app.start()
