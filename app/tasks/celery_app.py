# ============================================================================
# Celery Application Configuration
# ============================================================================
from celery import Celery
from celery.schedules import crontab
from app.config import get_settings

settings = get_settings()

celery_app = Celery(
    "educonnect_platform_analytics",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
    include=[
        "app.tasks.cache_tasks",
    ]
)

# Celery Configuration
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=10 * 60,  # 10 minutes
    worker_prefetch_multiplier=1,
    task_acks_late=True,
)

# Beat Schedule (Periodic Tasks)
celery_app.conf.beat_schedule = {
    # Keep overview, user metrics and KPIs warm
    "warm-platform-cache": {
        "task": "app.tasks.cache_tasks.warm_platform_cache",
        "schedule": crontab(minute=f"*/{settings.CACHE_WARMUP_INTERVAL_MINUTES}"),
    },

    # Drop cross-school reports nightly (1 AM UTC)
    "nightly-cache-invalidation": {
        "task": "app.tasks.cache_tasks.invalidate_platform_cache",
        "schedule": crontab(hour=1, minute=0),
    },
}
