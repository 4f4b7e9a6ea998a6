"""
Celery Worker Configuration
Sets up Celery with Redis as message broker and result backend.

Run with:
    celery -A tableside.celery_worker worker --loglevel=info
"""

from celery import Celery

from tableside.core.config import get_settings

settings = get_settings()

celery_app = Celery(
    "tableside_worker",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["tableside.tasks"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,

    # One archive write at a time per worker process; the file lock
    # serialises across processes
    worker_prefetch_multiplier=1,
    worker_concurrency=2,

    result_expires=3600,

    task_acks_late=True,
    task_reject_on_worker_lost=True,

    broker_connection_retry_on_startup=True,
)


if __name__ == "__main__":
    celery_app.start()
