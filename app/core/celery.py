from celery import Celery

from app.core.config import settings

celery_app = Celery(
    "telehealth_booking",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=["app.services.notification_service"],
)

# Serialisation, routing and the completion sweep schedule
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    result_expires=3600,
    task_routes={
        "app.services.notification_service.deliver_notification": {
            "queue": "notifications"
        },
        "app.services.notification_service.complete_elapsed_appointments": {
            "queue": "lifecycle"
        },
    },
    beat_schedule={
        "complete-elapsed-appointments": {
            "task": "app.services.notification_service.complete_elapsed_appointments",
            "schedule": float(settings.COMPLETION_SWEEP_SECONDS),
        },
    },
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    worker_max_tasks_per_child=1000,
)
