"""
Celery Worker Configuration
Sets up Celery with Redis as message broker and result backend.

Celery beat fires the recurring triggers; each beat task only enqueues a
``scheduled`` job into the durable queue, where the scheduled pool runs it.

Usage:
    celery -A app.celery_worker worker --beat --loglevel=info
"""

from celery import Celery
from celery.schedules import crontab

from app.core.config import get_settings

settings = get_settings()

# Create Celery app
celery_app = Celery(
    'restaurant_scheduler',
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=['app.tasks']  # Module containing our tasks
)

# Celery configuration
celery_app.conf.update(
    # Task settings
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',
    timezone='UTC',
    enable_utc=True,

    # Worker settings
    worker_prefetch_multiplier=1,  # Process one task at a time
    worker_concurrency=1,

    # Result settings
    result_expires=3600,  # Results expire after 1 hour

    # Task execution settings
    task_acks_late=True,  # Acknowledge task after completion
    task_reject_on_worker_lost=True,  # Requeue task if worker dies

    broker_connection_retry_on_startup=True,
)

# Recurring triggers (UTC)
celery_app.conf.beat_schedule = {
    'low-stock-check': {
        'task': 'app.tasks.enqueue_scheduled_job',
        'schedule': crontab(hour=6, minute=0),
        'args': ('low-stock-check',),
    },
    'expiry-check': {
        'task': 'app.tasks.enqueue_scheduled_job',
        'schedule': crontab(hour=7, minute=0),
        'args': ('expiry-check',),
    },
    'reservation-reminder': {
        'task': 'app.tasks.enqueue_scheduled_job',
        'schedule': crontab(minute=0),
        'args': ('reservation-reminder',),
    },
    'cleanup': {
        'task': 'app.tasks.enqueue_scheduled_job',
        'schedule': crontab(hour=0, minute=0),
        'args': ('cleanup',),
    },
}


if __name__ == '__main__':
    celery_app.start()
