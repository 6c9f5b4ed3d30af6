"""Course lifecycle for the owner: creation, start, cancellation and trash."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy.orm import Session, selectinload

from cursia.core.errors import ExternalServiceError, ForbiddenError, NotFoundError, RateLimitError, ValidationError
from cursia.core.plans import MAX_COURSES_PER_MONTH, PLAN_NAMES, can_create_course, coerce_plan, remaining_courses
from cursia.models.course.course_model import Course, CourseStatus, GenerationLog
from cursia.models.course.module_model import Module, Quiz
from cursia.models.user.user_model import User
from cursia.schemas.course_schema import CourseCreate
from cursia.services.course_status_service import compute_generation_progress
from cursia.services.progress_service import ProgressService
from cursia.services.queue_service import ACTION_METADATA, ACTION_MODULE, ACTION_REMAINING

logger = logging.getLogger(__name__)

CANCEL_DESCRIPTION = "Curso cancelado por el usuario durante la generación."
ENQUEUE_FAILED = "No se pudo encolar la generación del curso"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def serialize_course_summary(course: Course) -> dict[str, Any]:
    modules = course.modules
    total_modules = course.total_modules or len(modules)
    chunk_counts = [len(module.chunks) for module in modules]
    return {
        "id": course.id,
        "title": course.title,
        "description": course.description,
        "status": course.status.value,
        "progress": compute_generation_progress(course.status, chunk_counts, total_modules),
        "totalModules": total_modules,
        "modulesReady": sum(1 for count in chunk_counts if count > 0),
        "userLevel": course.user_level,
        "isPublic": course.is_public,
        "averageRating": course.average_rating,
        "totalRatings": course.total_ratings,
        "originalCourseId": course.original_course_id,
        "originalAuthorName": course.original_author_name,
        "createdAt": _iso(course.created_at),
        "deletedAt": _iso(course.deleted_at),
    }


def serialize_course_detail(course: Course) -> dict[str, Any]:
    """Full course for the learner view; correct answers stay server-side."""

    payload = serialize_course_summary(course)
    payload.update(
        {
            "userPrompt": course.user_prompt,
            "introduction": course.introduction,
            "prerequisites": list(course.prerequisites or []),
            "moduleList": list(course.module_list or []),
            "topics": list(course.topics or []),
            "language": course.language,
            "modules": [
                {
                    "id": module.id,
                    "moduleOrder": module.module_order,
                    "title": module.title,
                    "description": module.description,
                    "chunks": [
                        {
                            "id": chunk.id,
                            "chunkOrder": chunk.chunk_order,
                            "title": chunk.title,
                            "content": chunk.content,
                            "videoData": chunk.video_data,
                        }
                        for chunk in module.chunks
                    ],
                    "quiz": (
                        {
                            "id": module.quiz.id,
                            "title": module.quiz.title,
                            "questions": [
                                {
                                    "id": question.id,
                                    "questionOrder": question.question_order,
                                    "question": question.question,
                                    "options": list(question.options or []),
                                }
                                for question in module.quiz.questions
                            ],
                        }
                        if module.quiz is not None
                        else None
                    ),
                }
                for module in course.modules
            ],
        }
    )
    return payload


class CourseService:
    def __init__(self, db: Session, user: User, queue=None):
        self.db = db
        self.user = user
        self.queue = queue

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def list_courses(self) -> list[dict[str, Any]]:
        courses = (
            self._base_query()
            .filter(Course.user_id == self.user.id, Course.deleted_at.is_(None))
            .order_by(Course.created_at.desc(), Course.id.desc())
            .all()
        )
        return [serialize_course_summary(course) for course in courses]

    def list_trash(self) -> list[dict[str, Any]]:
        courses = (
            self._base_query()
            .filter(Course.user_id == self.user.id, Course.deleted_at.is_not(None))
            .order_by(Course.deleted_at.desc(), Course.id.desc())
            .all()
        )
        return [serialize_course_summary(course) for course in courses]

    def get_course(self, course_id: int) -> dict[str, Any]:
        return serialize_course_detail(self._get_owned(course_id))

    def create_course(self, payload: CourseCreate) -> dict[str, Any]:
        plan = coerce_plan(self.user.plan)
        used = self.courses_created_this_month()
        if not can_create_course(plan, used):
            raise ForbiddenError(
                f"Has alcanzado el límite de {MAX_COURSES_PER_MONTH[plan]} cursos este mes para el plan {PLAN_NAMES[plan]}.",
                upgradeRequired=True,
                currentPlan=plan.value,
                coursesThisMonth=used,
            )

        retry_after = self.queue.check_rate_limit(self.user.id) if self.queue is not None else None
        if retry_after is not None:
            raise RateLimitError(
                "Rate limit exceeded. Please wait before creating another course.",
                retryAfter=retry_after,
            )

        course = Course(
            user_id=self.user.id,
            user_prompt=payload.prompt,
            user_level=payload.level,
            user_interests=list(payload.interests),
            status=CourseStatus.GENERATING_METADATA,
        )
        self.db.add(course)
        self.db.commit()
        self.db.refresh(course)

        try:
            self._enqueue(course, ACTION_METADATA)
        except ExternalServiceError:
            # Sin trabajo encolado el curso no cuenta para el límite del plan.
            self.db.delete(course)
            self.db.commit()
            raise
        logger.info("Curso %s creado por usuario %s", course.id, self.user.id)
        return {
            "id": course.id,
            "status": course.status.value,
            "title": course.title,
            "remainingCourses": remaining_courses(plan, used + 1),
            "message": "Curso en generación",
        }

    def courses_created_this_month(self, now: Optional[datetime] = None) -> int:
        now = now or _utcnow()
        month_start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
        return (
            self.db.query(Course)
            .filter(
                Course.user_id == self.user.id,
                Course.created_at >= month_start,
                Course.deleted_at.is_(None),
            )
            .count()
        )

    def start_course(self, course_id: int) -> dict[str, Any]:
        course = self._get_owned(course_id)
        if not course.title or not course.modules:
            raise ValidationError("Course not ready")

        first_module = course.modules[0]
        modules_ready = sum(1 for module in course.modules if module.chunks)
        total_modules = course.total_modules or len(course.modules)
        if not first_module.chunks:
            return {
                "status": "generating",
                "message": "El primer módulo aún se está generando",
                "modulesReady": modules_ready,
                "totalModules": total_modules,
            }

        progress = ProgressService(self.db, self.user).ensure_progress(course)

        if course.status == CourseStatus.READY and modules_ready < len(course.modules):
            self._enqueue_or_revert(course, ACTION_REMAINING)

        return {
            "success": True,
            "progressId": progress.id,
            "modulesReady": modules_ready,
            "totalModules": total_modules,
        }

    def generate_remaining(self, course_id: int) -> dict[str, Any]:
        course = self._get_owned(course_id)
        if course.status != CourseStatus.READY:
            raise ValidationError("Course must be READY to generate remaining modules", status=course.status.value)

        (job_id,) = self._enqueue_or_revert(course, ACTION_REMAINING)
        return {"success": True, "status": course.status.value, "jobId": job_id}

    def cancel_generation(self, course_id: int) -> dict[str, Any]:
        course = self._get_owned(course_id)
        if course.status in (CourseStatus.COMPLETE, CourseStatus.READY):
            raise ValidationError("Course generation already finished", status=course.status.value)

        course.status = CourseStatus.FAILED
        course.description = CANCEL_DESCRIPTION
        self.db.commit()
        logger.info("Generación del curso %s cancelada por el usuario %s", course.id, self.user.id)
        return {"success": True, "status": course.status.value}

    def soft_delete(self, course_id: int) -> dict[str, Any]:
        course = self._get_owned(course_id)
        course.deleted_at = _utcnow()
        course.is_public = False
        self.db.commit()
        return {"success": True, "deletedAt": _iso(course.deleted_at)}

    def restore(self, course_id: int) -> dict[str, Any]:
        course = self._get_deleted(course_id)
        course.deleted_at = None
        self.db.commit()
        return {"success": True, "course": serialize_course_summary(course)}

    def permanent_delete(self, course_id: int) -> dict[str, Any]:
        course = self._get_deleted(course_id)
        self.db.delete(course)
        self.db.commit()
        logger.info("Curso %s eliminado definitivamente por el usuario %s", course_id, self.user.id)
        return {"success": True}

    def regenerate_missing_modules(self, course_id: int, module_orders: Optional[list[int]] = None) -> dict[str, Any]:
        """Back-office: enqueue one job per module still lacking content."""

        course = self._base_query().filter(Course.id == course_id).first()
        if course is None:
            raise NotFoundError("Course not found")

        wanted = set(module_orders or [])
        targets = [
            module.module_order
            for module in course.modules
            if not module.chunks and (not wanted or module.module_order in wanted)
        ]
        if not targets:
            return {
                "success": True,
                "message": "All modules already have content",
                "courseId": course.id,
                "modules": [],
                "jobs": [],
            }

        jobs = self._enqueue_or_revert(course, ACTION_MODULE, module_orders=targets)
        logger.info("Regeneración de módulos %s encolada para el curso %s", targets, course.id)
        return {"success": True, "courseId": course.id, "modules": targets, "jobs": jobs}

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _base_query(self):
        return self.db.query(Course).options(
            selectinload(Course.modules).selectinload(Module.chunks),
            selectinload(Course.modules).selectinload(Module.quiz).selectinload(Quiz.questions),
        )

    def _get_owned(self, course_id: int) -> Course:
        course = (
            self._base_query()
            .filter(Course.id == course_id, Course.user_id == self.user.id, Course.deleted_at.is_(None))
            .first()
        )
        if course is None:
            raise NotFoundError("Course not found")
        return course

    def _get_deleted(self, course_id: int) -> Course:
        course = (
            self.db.query(Course)
            .filter(Course.id == course_id, Course.user_id == self.user.id, Course.deleted_at.is_not(None))
            .first()
        )
        if course is None:
            raise NotFoundError("Deleted course not found")
        return course

    def _enqueue(self, course: Course, action: str, *, module_order: Optional[int] = None) -> Optional[str]:
        if self.queue is None:
            logger.warning("Cola no configurada; el curso %s no se encolará (%s)", course.id, action)
            return None
        try:
            return self.queue.enqueue(course.id, action, module_order=module_order)
        except Exception as exc:
            logger.error("No se pudo encolar el curso %s (%s): %s", course.id, action, exc)
            raise ExternalServiceError(ENQUEUE_FAILED) from exc

    def _enqueue_or_revert(
        self,
        course: Course,
        action: str,
        *,
        module_orders: Optional[list[int]] = None,
    ) -> list[Optional[str]]:
        """Move the course to GENERATING_REMAINING and enqueue its jobs.

        When the broker rejects a job the previous status is restored, so the
        course never waits on work that was never queued.
        """

        previous = course.status
        course.status = CourseStatus.GENERATING_REMAINING
        self.db.commit()
        try:
            return [self._enqueue(course, action, module_order=order) for order in (module_orders or [None])]
        except ExternalServiceError:
            course.status = previous
            self.db.add(GenerationLog(course_id=course.id, action="generation_failed", message=ENQUEUE_FAILED))
            self.db.commit()
            raise
