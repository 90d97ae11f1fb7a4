from celery import Celery

from app.core.config import settings

celery_app = Celery(
    "auth_backend",
    broker=settings.CELERY_BROKER_URL,
    include=["app.tasks.maintenance_tasks"],
)

celery_app.conf.update(
    timezone="UTC",
    enable_utc=True,
    task_acks_late=True,
    beat_schedule={
        "sweep-expired-sessions": {
            "task": "app.tasks.maintenance_tasks.sweep_expired_sessions",
            "schedule": settings.SESSION_CLEANUP_INTERVAL_HOURS * 3600,
        },
        "purge-audit-logs": {
            "task": "app.tasks.maintenance_tasks.purge_audit_logs",
            "schedule": 24 * 3600,
        },
        "purge-refresh-tokens": {
            "task": "app.tasks.maintenance_tasks.purge_refresh_tokens",
            "schedule": 24 * 3600,
        },
    },
)
