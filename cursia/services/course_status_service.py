"""Generation progress for courses, derived from status and module content."""

from __future__ import annotations

import logging
from typing import Any, Sequence

from sqlalchemy.orm import Session, selectinload

from cursia.core.errors import NotFoundError
from cursia.models.course.course_model import Course, CourseStatus
from cursia.models.course.module_model import Module, Quiz
from cursia.models.user.user_model import User
from cursia.utils.math_utils import round_half_up

logger = logging.getLogger(__name__)

STATUS_PROGRESS: dict[CourseStatus, int] = {
    CourseStatus.GENERATING_METADATA: 15,
    CourseStatus.METADATA_READY: 30,
    CourseStatus.GENERATING_MODULE_1: 50,
    CourseStatus.READY: 85,
    CourseStatus.COMPLETE: 100,
}

FALLBACK_MIN_PROGRESS = 10
FALLBACK_MAX_PROGRESS = 80


def compute_generation_progress(
    status: CourseStatus | str,
    chunk_counts: Sequence[int],
    total_modules: int,
) -> int:
    """Return the 0-100 generation progress of a course.

    Known statuses map to fixed values. Any other status falls back to the
    share of modules with content, scaled to 80 and floored at 10.
    """

    try:
        status = CourseStatus(status)
    except ValueError:
        pass

    if status in STATUS_PROGRESS:
        return STATUS_PROGRESS[status]

    if total_modules <= 0:
        return FALLBACK_MIN_PROGRESS

    with_content = sum(1 for count in chunk_counts if count > 0)
    scaled = min(with_content / total_modules * FALLBACK_MAX_PROGRESS, FALLBACK_MAX_PROGRESS)
    return max(round_half_up(scaled), FALLBACK_MIN_PROGRESS)


def module_readiness(module: Module) -> dict[str, Any]:
    chunks_count = len(module.chunks)
    questions_count = len(module.quiz.questions) if module.quiz is not None else 0
    has_content = chunks_count > 0
    has_quiz = module.quiz is not None
    return {
        "moduleId": module.id,
        "moduleOrder": module.module_order,
        "title": module.title,
        "hasContent": has_content,
        "hasQuiz": has_quiz,
        "isComplete": has_content and has_quiz,
        "chunksCount": chunks_count,
        "quizQuestionsCount": questions_count,
    }


class CourseStatusService:
    def __init__(self, db: Session, user: User, queue=None):
        self.db = db
        self.user = user
        self.queue = queue

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def get_status(self, course_id: int) -> dict[str, Any]:
        course = self._load_course(course_id)
        modules = course.modules
        total_modules = course.total_modules or len(modules)
        chunk_counts = [len(module.chunks) for module in modules]

        return {
            "status": course.status.value,
            "progress": compute_generation_progress(course.status, chunk_counts, total_modules),
            "modulesReady": sum(1 for count in chunk_counts if count > 0),
            "totalModules": total_modules,
        }

    def get_generation_status(self, course_id: int) -> dict[str, Any]:
        course = self._load_course(course_id)
        modules = [module_readiness(module) for module in course.modules]
        total_modules = course.total_modules or len(modules)
        completed_modules = sum(1 for module in modules if module["isComplete"])

        payload = {
            "courseId": course.id,
            "title": course.title,
            "status": course.status.value,
            "progressPercentage": compute_generation_progress(
                course.status,
                [module["chunksCount"] for module in modules],
                total_modules,
            ),
            "totalModules": total_modules,
            "completedModules": completed_modules,
            "isFullyGenerated": total_modules > 0 and completed_modules == total_modules,
            "modules": modules,
            "jobs": [],
        }

        if self.queue is not None:
            try:
                payload["jobs"] = self.queue.get_course_generation_status(course.id)
            except Exception as exc:
                # La cola es informativa: el estado del curso viene de la base de datos.
                logger.warning("No se pudo consultar la cola para el curso %s: %s", course.id, exc)

        return payload

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _load_course(self, course_id: int) -> Course:
        course = (
            self.db.query(Course)
            .options(
                selectinload(Course.modules).selectinload(Module.chunks),
                selectinload(Course.modules).selectinload(Module.quiz).selectinload(Quiz.questions),
            )
            .filter(
                Course.id == course_id,
                Course.user_id == self.user.id,
                Course.deleted_at.is_(None),
            )
            .first()
        )
        if course is None:
            raise NotFoundError("Course not found")
        return course
