"""
Celery Tasks
Background archiving of cleared sessions.
"""

import time
from datetime import datetime, timezone

from celery.utils.log import get_task_logger

from tableside.celery_worker import celery_app
from tableside.services.archive import SessionArchive

logger = get_task_logger(__name__)


class ArchiveLockTimeout(Exception):
    """The archive workbook stayed locked; the task is retried."""


@celery_app.task(
    bind=True,
    max_retries=3,
    default_retry_delay=5,
    autoretry_for=(ArchiveLockTimeout, OSError),
    retry_backoff=True,
)
def archive_sessions(self, rows: list[dict]) -> dict:
    """
    Append cleared sessions to the archive workbook.

    Args:
        rows: One dict per session (see services.archive.archive_row)

    Returns:
        dict: Result of the export operation
    """
    task_id = self.request.id
    logger.info(f"📋 Task {task_id}: archiving {len(rows)} sessions")
    start_time = time.time()

    result = SessionArchive().export_sessions(rows)

    elapsed = round(time.time() - start_time, 3)
    result["task_id"] = task_id
    result["processing_time_seconds"] = elapsed

    if not result["success"]:
        logger.warning(f"⚠️ Task {task_id}: {result['message']}")
        raise ArchiveLockTimeout(result["message"])

    logger.info(f"✅ Task {task_id}: {result['message']} in {elapsed}s")
    return result


@celery_app.task
def health_check() -> dict:
    """
    Simple health check task to verify Celery is working.
    """
    return {
        "status": "healthy",
        "worker": "celery",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
