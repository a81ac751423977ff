"""
Celery Application Configuration
"""

from celery import Celery
from celery.schedules import crontab

from core.config import get_settings

settings = get_settings()

celery_app = Celery(
    "golive",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["workers.promotion"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    worker_prefetch_multiplier=1,
    task_routes={
        "workers.promotion.*": {"queue": "promotion"},
    },
    # ── Celery Beat Schedule ─────────────────────────────────────────
    beat_schedule={
        # Deployments stuck in "deploying" past the stale threshold are closed out
        "sweep-stale-deployments-5m": {
            "task": "workers.promotion.sweep_stale_deployments",
            "schedule": crontab(minute="*/5"),
            "options": {"queue": "promotion"},
        },
    },
)

# Auto-discover tasks
celery_app.autodiscover_tasks(["workers"])
