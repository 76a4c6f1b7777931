"""
Celery configuration for background tasks
"""
from celery import Celery
import logging

from agence_api.core.config import settings

logger = logging.getLogger(__name__)

# Create Celery instance
celery_app = Celery(
    "agence_api",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=[
        "agence_api.modules.invoices.tasks",
    ]
)

# Celery configuration
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=30 * 60,  # 30 minutes
    task_soft_time_limit=25 * 60,  # 25 minutes
    worker_prefetch_multiplier=1,
    worker_max_tasks_per_child=1000,

    # Result backend settings
    result_expires=3600,  # 1 hour

    # Task routes for different queues
    task_routes={
        "agence_api.modules.invoices.tasks.*": {"queue": "invoices"},
    },

    # Beat schedule for periodic tasks
    beat_schedule={
        "mark-overdue-invoices": {
            "task": "agence_api.modules.invoices.tasks.mark_overdue_invoices_task",
            "schedule": settings.OVERDUE_SWEEP_INTERVAL,  # daily by default
        },
    }
)

if __name__ == "__main__":
    celery_app.start()
