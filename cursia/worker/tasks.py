"""Celery tasks consuming the course-generation queue.

Start a worker with::

    celery -A cursia.worker.celery_app worker -Q course-generation -l info
"""

import logging
from typing import Any, Dict, Optional

from celery import Task

import cursia.db.base  # noqa: F401  (registra todos los modelos)
from cursia.core.errors import GenerationError
from cursia.db.session import SessionLocal
from cursia.services.course_generator import CourseBuilder
from cursia.services.queue_service import GENERATE_COURSE_TASK
from cursia.worker.celery_app import celery_app

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 3


def run_generation_job(db, course_id: int, action: str, module_order: Optional[int] = None, builder=None) -> Dict[str, Any]:
    builder = builder or CourseBuilder(db)
    logger.info("Trabajo de generación: curso %s, acción %s", course_id, action)
    return builder.run(course_id, action, module_order)


def handle_terminal_failure(db, course_id: int, exc: BaseException) -> bool:
    """Called once every retry is exhausted; unblocks courses stuck generating."""

    return CourseBuilder(db, generator=None, video_finder=None).mark_failed(
        course_id, f"Generación fallida tras {MAX_ATTEMPTS} intentos: {exc}"
    )


class GenerationTask(Task):
    def on_failure(self, exc, task_id, args, kwargs, einfo):
        course_id = args[0] if args else kwargs.get("course_id")
        logger.error("Trabajo %s fallido definitivamente para el curso %s: %s", task_id, course_id, exc)
        if course_id is None:
            return

        db = SessionLocal()
        try:
            handle_terminal_failure(db, course_id, exc)
        except Exception as error:
            logger.error("No se pudo marcar el curso %s como fallido: %s", course_id, error, exc_info=True)
        finally:
            db.close()


@celery_app.task(
    bind=True,
    base=GenerationTask,
    name=GENERATE_COURSE_TASK,
    autoretry_for=(GenerationError,),
    max_retries=MAX_ATTEMPTS - 1,
    retry_backoff=2,
    retry_backoff_max=60,
    retry_jitter=False,
)
def generate_course_content(self, course_id: int, action: str, module_order: Optional[int] = None) -> Dict[str, Any]:
    db = SessionLocal()
    try:
        return run_generation_job(db, course_id, action, module_order)
    except GenerationError as exc:
        db.rollback()
        logger.warning(
            "Intento %s/%s fallido para el curso %s: %s",
            self.request.retries + 1,
            MAX_ATTEMPTS,
            course_id,
            exc,
        )
        raise
    finally:
        db.close()
