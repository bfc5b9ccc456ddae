from celery import Celery
from celery.schedules import crontab
import os
from medconnect.core.config import settings

SWEEP_TASK = "medconnect.workers.tasks.sweep_expired_prescriptions"
DISPATCH_TASK = "medconnect.workers.tasks.dispatch_prescription_notifications"

celery_app = Celery(
    "medconnect_prescriptions",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
    include=["medconnect.workers.tasks"]
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,

    # One batch at a time per worker; a lost worker hands the batch back
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    worker_max_tasks_per_child=500,

    # Notification delivery talks to slow providers, keep it off the sweep queue
    task_routes={
        DISPATCH_TASK: {"queue": "notifications"},
        SWEEP_TASK: {"queue": "prescriptions"},
    },
    task_default_queue="prescriptions",

    task_soft_time_limit=120,
    task_time_limit=180,

    beat_schedule={
        "sweep-expired-prescriptions": {
            "task": SWEEP_TASK,
            "schedule": crontab(minute=f"*/{settings.EXPIRY_SWEEP_MINUTES}"),
            # A sweep that waited a whole interval is superseded by the next one
            "options": {"expires": settings.EXPIRY_SWEEP_MINUTES * 60},
        },
        "dispatch-prescription-notifications": {
            "task": DISPATCH_TASK,
            "schedule": float(settings.NOTIFICATION_DISPATCH_SECONDS),
            "options": {"expires": settings.NOTIFICATION_DISPATCH_SECONDS},
        },
    },

    # Reports are only inspected right after a run
    result_expires=settings.EXPIRY_SWEEP_MINUTES * 60 * 4,
    broker_connection_retry_on_startup=True,
)

if os.getenv("ENVIRONMENT") == "production":
    celery_app.conf.update(
        worker_task_log_format="[%(asctime)s: %(levelname)s/%(processName)s][%(task_name)s(%(task_id)s)] %(message)s",
        worker_log_color=False,
        worker_concurrency=2,
    )


if __name__ == "__main__":
    celery_app.start()
