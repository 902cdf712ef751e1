"""
Celery Tasks
Beat-triggered tasks that hand recurring work to the durable job queue.
"""

import asyncio
import logging
import time
from datetime import datetime
from typing import Optional

from app.celery_worker import celery_app
from app.core.config import get_settings
from app.database import create_engine, create_session_factory
from app.jobs.dispatcher import JobDispatcher
from app.jobs.payloads import JobCategory

logger = logging.getLogger(__name__)


async def _enqueue(job_type: str, location_id: Optional[str]) -> str:
    settings = get_settings()
    engine = create_engine(settings.effective_queue_database_url)
    try:
        dispatcher = JobDispatcher(create_session_factory(engine), settings)
        payload = {"type": job_type}
        if location_id:
            payload["location_id"] = location_id
        return await dispatcher.enqueue(JobCategory.SCHEDULED, payload)
    finally:
        await engine.dispose()


@celery_app.task(
    bind=True,
    max_retries=3,
    default_retry_delay=5,
    autoretry_for=(Exception,),
    retry_backoff=True
)
def enqueue_scheduled_job(self, job_type: str, location_id: Optional[str] = None) -> dict:
    """
    Enqueue a ``scheduled`` job (low-stock-check, expiry-check,
    reservation-reminder, cleanup).

    Args:
        job_type: Scheduled job type
        location_id: Restrict the scan to one location

    Returns:
        dict: The enqueued job id
    """
    task_id = self.request.id
    start_time = time.time()

    job_id = asyncio.run(_enqueue(job_type, location_id))

    elapsed = round(time.time() - start_time, 3)
    logger.info(f"📋 Task {task_id}: enqueued {job_type} as job {job_id} in {elapsed}s")
    return {
        'task_id': task_id,
        'job_id': job_id,
        'type': job_type,
        'timestamp': datetime.now().isoformat(),
    }


@celery_app.task
def health_check() -> dict:
    """
    Simple health check task to verify Celery is working.
    """
    return {
        'status': 'healthy',
        'worker': 'celery',
        'timestamp': datetime.now().isoformat()
    }
