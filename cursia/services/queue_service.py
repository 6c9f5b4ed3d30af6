"""Producer side of the course-generation job queue.

Jobs are Celery tasks sent by name, so the API never imports the worker
code. Each job is also recorded in Redis under its course so the status
endpoints can list the jobs of one course without scanning the broker.
"""

from __future__ import annotations

import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Optional

import redis
from celery import Celery

from cursia.core.config import settings

logger = logging.getLogger(__name__)

GENERATE_COURSE_TASK = "cursia.generate_course_content"
DEFAULT_PRIORITY = 1

ACTION_METADATA = "metadata"
ACTION_MODULE = "module"
ACTION_REMAINING = "remaining"
ACTIONS = frozenset({ACTION_METADATA, ACTION_MODULE, ACTION_REMAINING})

JOB_KEY = "generation_job:{job_id}"
COURSE_JOBS_KEY = "generation_jobs:course:{course_id}"
ALL_JOBS_KEY = "generation_jobs:all"
RATE_LIMIT_KEY = "generation_rate:user:{user_id}"
JOB_TTL_SECONDS = 7 * 24 * 3600

# Estados de Celery agrupados como los expone la API.
_STATE_MAP = {
    "PENDING": "waiting",
    "RECEIVED": "waiting",
    "STARTED": "active",
    "RETRY": "active",
    "SUCCESS": "completed",
    "FAILURE": "failed",
    "REVOKED": "failed",
}
QUEUE_STATES = ("waiting", "active", "completed", "failed")


def build_redis_client() -> redis.Redis:
    return redis.Redis(
        host=settings.REDIS_HOST,
        port=settings.REDIS_PORT,
        password=settings.REDIS_PASSWORD,
        decode_responses=True,
    )


class QueueService:
    def __init__(self, celery_app: Optional[Celery] = None, redis_client: Optional[redis.Redis] = None):
        if celery_app is None:
            from cursia.worker.celery_app import celery_app as default_app

            celery_app = default_app
        self.celery_app = celery_app
        self.redis_client = redis_client if redis_client is not None else build_redis_client()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def enqueue(
        self,
        course_id: int,
        action: str,
        *,
        module_order: Optional[int] = None,
        priority: int = DEFAULT_PRIORITY,
    ) -> str:
        if action not in ACTIONS:
            raise ValueError(f"Acción de generación desconocida: {action}")

        job_id = str(uuid.uuid4())
        kwargs: dict[str, Any] = {}
        if module_order is not None:
            kwargs["module_order"] = module_order

        self.celery_app.send_task(
            GENERATE_COURSE_TASK,
            args=[course_id, action],
            kwargs=kwargs,
            task_id=job_id,
            priority=priority,
        )

        job_info = {
            "jobId": job_id,
            "courseId": course_id,
            "action": action,
            "moduleOrder": module_order,
            "priority": priority,
            "createdAt": datetime.now(timezone.utc).isoformat(),
        }
        self.redis_client.set(JOB_KEY.format(job_id=job_id), json.dumps(job_info), ex=JOB_TTL_SECONDS)
        course_key = COURSE_JOBS_KEY.format(course_id=course_id)
        self.redis_client.rpush(course_key, job_id)
        # La lista vive lo mismo que su trabajo más reciente.
        self.redis_client.expire(course_key, JOB_TTL_SECONDS)
        self.redis_client.sadd(ALL_JOBS_KEY, job_id)

        logger.info("Trabajo %s encolado: curso %s, acción %s", job_id, course_id, action)
        return job_id

    def get_course_generation_status(self, course_id: int) -> list[dict[str, Any]]:
        course_key = COURSE_JOBS_KEY.format(course_id=course_id)
        jobs = []
        for job_id in self.redis_client.lrange(course_key, 0, -1):
            job = self._load_job(job_id)
            if job is None:
                self.redis_client.lrem(course_key, 0, job_id)
                continue
            jobs.append(job)
        return jobs

    def check_rate_limit(self, user_id: int) -> Optional[int]:
        """Count one course creation for ``user_id`` inside the current window.

        Returns ``None`` while the user is under the limit, otherwise the
        seconds left until the window resets.
        """

        key = RATE_LIMIT_KEY.format(user_id=user_id)
        window = settings.GENERATION_RATE_LIMIT_WINDOW_SECONDS
        count = self.redis_client.incr(key)
        if count == 1:
            self.redis_client.expire(key, window)
        if count <= settings.GENERATION_RATE_LIMIT_MAX:
            return None

        ttl = self.redis_client.ttl(key)
        if ttl is None or ttl < 0:
            # Clave sin expiración: se repara para no bloquear al usuario.
            self.redis_client.expire(key, window)
            return window
        return max(int(ttl), 1)

    def get_queue_stats(self) -> dict[str, int]:
        stats = {state: 0 for state in QUEUE_STATES}
        for job_id in self.redis_client.smembers(ALL_JOBS_KEY):
            job = self._load_job(job_id)
            if job is None:
                # Expirado: se limpia del índice.
                self.redis_client.srem(ALL_JOBS_KEY, job_id)
                continue
            stats[job["state"]] += 1
        return stats

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _load_job(self, job_id: str) -> Optional[dict[str, Any]]:
        raw = self.redis_client.get(JOB_KEY.format(job_id=job_id))
        if not raw:
            return None

        job = json.loads(raw)
        result = self.celery_app.AsyncResult(job_id)
        job["state"] = _STATE_MAP.get(str(result.state), "waiting")
        if job["state"] == "failed" and result.result is not None:
            job["error"] = str(result.result)
        return job
