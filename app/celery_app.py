"""
Great Pearl Coffee Finance - Celery Configuration

Celery configuration for background task processing.
Uses Redis as the message broker and result backend.
"""

from celery import Celery
from celery.schedules import crontab

from app.config import settings


# Create Celery app
celery_app = Celery(
    'greatpearl_finance',
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=['app.tasks.celery_tasks'],
)

# Celery configuration
celery_app.conf.update(
    # Serialization
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',

    # Timezone
    timezone='Africa/Kampala',
    enable_utc=True,

    # Task execution settings
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_time_limit=300,  # 5 minutes
    task_soft_time_limit=240,  # 4 minutes (warning before hard limit)

    # Worker settings
    worker_prefetch_multiplier=1,

    # Result backend settings
    result_expires=86400,  # 24 hours

    # Retry settings
    task_default_retry_delay=60,  # 1 minute

    # Beat schedule for periodic tasks
    beat_schedule={
        # Drain the notification outbox every minute
        'deliver-notifications': {
            'task': 'app.tasks.celery_tasks.deliver_notifications_task',
            'schedule': crontab(),
        },

        # Retire expired withdrawal codes every 15 minutes
        'expire-withdrawal-codes': {
            'task': 'app.tasks.celery_tasks.expire_withdrawal_codes_task',
            'schedule': crontab(minute='*/15'),
        },

        # Check the cash balance against the ledger every night
        'verify-cash-ledger': {
            'task': 'app.tasks.celery_tasks.verify_cash_ledger_task',
            'schedule': crontab(hour=1, minute=0),
        },
    },
)


# Task routing
celery_app.conf.task_routes = {
    'app.tasks.celery_tasks.deliver_*': {'queue': 'notifications'},
    'app.tasks.celery_tasks.*': {'queue': 'default'},
}
