"""
Celery Worker Configuration

The worker owns the Excel sales ledger. Redis is broker and result
backend, and every task lands on the ledger queue:

    celery -A app.celery_worker worker --loglevel=info
"""

from celery import Celery

from app.core.config import get_settings

settings = get_settings()

celery_app = Celery(
    "table_ordering_ledger",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["app.tasks"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone=settings.restaurant_timezone,
    enable_utc=True,

    task_default_queue=settings.ledger_queue,

    # Rows are appended under a file lock, one writer is enough
    worker_concurrency=1,
    worker_prefetch_multiplier=1,

    # Acknowledge once the row is in the spreadsheet
    task_acks_late=True,
    task_reject_on_worker_lost=True,

    result_expires=3600,
    broker_connection_retry_on_startup=True,
)
