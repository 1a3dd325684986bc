"""Celery app for scheduled maintenance of the chat history store."""
from celery import Celery
from celery.schedules import crontab
import os

# Broker and result backend default to the Redis instance that holds the usage counters
REDIS_URL = os.getenv('REDIS_URL', 'redis://localhost:6379/0')

celery = Celery(
    'rocode',
    broker=os.getenv('CELERY_BROKER_URL', REDIS_URL),
    backend=os.getenv('CELERY_RESULT_BACKEND', REDIS_URL),
    include=['services.retention']
)

celery.conf.update(
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',
    timezone='UTC',
    enable_utc=True,
    result_expires=24 * 3600,  # Keep the last purge summary for a day
    task_time_limit=10 * 60,
    task_soft_time_limit=8 * 60,
    task_acks_late=True,
    worker_prefetch_multiplier=1,
)

# Retention runs once a day, after the UTC day boundary the quota counters roll over on
celery.conf.beat_schedule = {
    'purge-expired-threads': {
        'task': 'purge_expired_threads',
        'schedule': crontab(hour=3, minute=0),
    },
}

if __name__ == '__main__':
    celery.start()
