from celery import Celery

from cursia.core.config import settings

celery_app = Celery("cursia", include=["cursia.worker.tasks"])
celery_app.config_from_object({
    "broker_url": settings.redis_url,
    "result_backend": settings.redis_url,
    "task_serializer": "json",
    "accept_content": ["json"],
    "result_serializer": "json",
    "timezone": "UTC",
    "enable_utc": True,
    "task_default_queue": "course-generation",
    "task_acks_late": True,
    "worker_prefetch_multiplier": 1,
    # Prioridades sobre Redis: 0 es la más alta.
    "broker_transport_options": {
        "priority_steps": list(range(10)),
        "queue_order_strategy": "priority",
    },
    "result_expires": 7 * 24 * 3600,
})
