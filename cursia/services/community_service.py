"""Community library: public listing, publishing, ratings and course cloning."""

from __future__ import annotations

import logging
import math
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from cursia.core.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from cursia.core.plans import can_access_community, can_publish, coerce_plan
from cursia.models.course.course_model import Course, CourseStatus
from cursia.models.course.module_model import Chunk, Module, Quiz, QuizQuestion
from cursia.models.course.rating_model import CourseRating
from cursia.models.user.user_model import User
from cursia.utils.math_utils import round_half_up

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 50

SORT_ORDERS = {
    "newest": (Course.created_at.desc(), Course.id.desc()),
    "oldest": (Course.created_at.asc(), Course.id.asc()),
    "rating": (Course.average_rating.desc(), Course.total_ratings.desc(), Course.id.desc()),
    "completions": (Course.total_completions.desc(), Course.id.desc()),
}


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _pagination(page: int, limit: int, total: int) -> dict[str, int]:
    return {"page": page, "limit": limit, "total": total, "totalPages": math.ceil(total / limit) if limit else 0}


def _author(user: Optional[User]) -> Optional[dict[str, Any]]:
    if user is None:
        return None
    return {"id": user.id, "name": user.full_name, "username": user.username, "plan": coerce_plan(user.plan).value}


def serialize_public_course(course: Course) -> dict[str, Any]:
    return {
        "id": course.id,
        "title": course.title,
        "description": course.description,
        "userLevel": course.user_level,
        "topics": list(course.topics or []),
        "totalModules": course.total_modules,
        "averageRating": course.average_rating,
        "totalRatings": course.total_ratings,
        "totalCompletions": course.total_completions,
        "publishedAt": _iso(course.published_at),
        "createdAt": _iso(course.created_at),
        "author": _author(course.owner),
    }


def _serialize_rating(rating: CourseRating) -> dict[str, Any]:
    return {
        "id": rating.id,
        "rating": rating.rating,
        "comment": rating.comment,
        "createdAt": _iso(rating.created_at),
        "user": _author(rating.user),
    }


class CommunityService:
    def __init__(self, db: Session, user: User):
        self.db = db
        self.user = user

    # ------------------------------------------------------------------
    # Listing
    # ------------------------------------------------------------------
    def list_public(
        self,
        *,
        search: Optional[str] = None,
        level: Optional[str] = None,
        page: int = 1,
        limit: int = 10,
        sort_by: str = "newest",
    ) -> dict[str, Any]:
        page = max(page, 1)
        limit = min(max(limit, 1), MAX_PAGE_SIZE)

        query = self.db.query(Course).filter(Course.is_public.is_(True), Course.deleted_at.is_(None))
        if search:
            pattern = f"%{search.strip()}%"
            query = query.filter(or_(Course.title.ilike(pattern), Course.description.ilike(pattern)))
        if level:
            query = query.filter(func.lower(Course.user_level) == level.strip().lower())

        total = query.count()
        courses = (
            query.options(selectinload(Course.owner))
            .order_by(*SORT_ORDERS.get(sort_by, SORT_ORDERS["newest"]))
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return {
            "courses": [serialize_public_course(course) for course in courses],
            "pagination": _pagination(page, limit, total),
            "userPlan": coerce_plan(self.user.plan).value,
            "canAccessCommunity": can_access_community(self.user.plan),
        }

    # ------------------------------------------------------------------
    # Publishing
    # ------------------------------------------------------------------
    def publish(self, course_id: int) -> dict[str, Any]:
        self._require_publisher()
        course = self._get_own_course(course_id)
        if course.status == CourseStatus.FAILED:
            raise ValidationError("No se puede publicar un curso fallido")

        course.is_public = True
        course.published_at = datetime.now(timezone.utc)
        self.db.commit()
        logger.info("Curso %s publicado por el usuario %s", course.id, self.user.id)
        return {"message": "Curso publicado exitosamente", "course": serialize_public_course(course)}

    def unpublish(self, course_id: int) -> dict[str, Any]:
        self._require_publisher()
        course = self._get_own_course(course_id)
        if not course.is_public:
            raise NotFoundError("Curso no encontrado o no está publicado")

        course.is_public = False
        course.published_at = None
        self.db.commit()
        logger.info("Curso %s retirado de la comunidad por el usuario %s", course.id, self.user.id)
        return {"message": "Curso despublicado exitosamente", "courseId": course.id}

    # ------------------------------------------------------------------
    # Ratings
    # ------------------------------------------------------------------
    def rate(self, course_id: int, rating: int, comment: Optional[str] = None) -> dict[str, Any]:
        self._require_community()
        if isinstance(rating, bool) or not isinstance(rating, int) or not 1 <= rating <= 5:
            raise ValidationError("La calificación debe estar entre 1 y 5")

        course = self._get_public_course(course_id)
        if course.user_id == self.user.id:
            raise ValidationError("No puedes calificar tu propio curso")

        try:
            try:
                existing = self._save_rating(course, rating, comment)
            except IntegrityError:
                # Primera calificación concurrente: la fila ya existe y se actualiza.
                self.db.rollback()
                existing = self._save_rating(course, rating, comment)
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(existing)
        return {
            "message": "Calificación guardada",
            "rating": _serialize_rating(existing),
            "courseStats": {"averageRating": course.average_rating, "totalRatings": course.total_ratings},
        }

    def list_ratings(self, course_id: int, *, page: int = 1, limit: int = 10) -> dict[str, Any]:
        self._require_community()
        course = self._get_public_course(course_id)
        page = max(page, 1)
        limit = min(max(limit, 1), MAX_PAGE_SIZE)

        query = self.db.query(CourseRating).filter(CourseRating.course_id == course.id)
        total = query.count()
        ratings = (
            query.options(selectinload(CourseRating.user))
            .order_by(CourseRating.created_at.desc(), CourseRating.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        own = (
            self.db.query(CourseRating)
            .filter(CourseRating.course_id == course.id, CourseRating.user_id == self.user.id)
            .first()
        )
        return {
            "ratings": [_serialize_rating(rating) for rating in ratings],
            "userRating": _serialize_rating(own) if own else None,
            "pagination": _pagination(page, limit, total),
            "courseStats": {
                "averageRating": course.average_rating,
                "totalRatings": course.total_ratings,
                "totalCompletions": course.total_completions,
            },
        }

    # ------------------------------------------------------------------
    # Take course
    # ------------------------------------------------------------------
    def take_course(self, course_id: int) -> dict[str, Any]:
        if not can_access_community(self.user.plan):
            raise ForbiddenError("Necesitas plan EXPERTO o MAESTRO para tomar cursos de la comunidad")

        original = (
            self.db.query(Course)
            .options(
                selectinload(Course.owner),
                selectinload(Course.modules).selectinload(Module.chunks),
                selectinload(Course.modules).selectinload(Module.quiz).selectinload(Quiz.questions),
            )
            .filter(
                Course.id == course_id,
                Course.is_public.is_(True),
                Course.deleted_at.is_(None),
                Course.user_id != self.user.id,
            )
            .first()
        )
        if original is None:
            raise NotFoundError("Curso no encontrado o no disponible para tomar")

        existing = (
            self.db.query(Course)
            .filter(
                Course.user_id == self.user.id,
                Course.original_course_id == original.id,
                Course.deleted_at.is_(None),
            )
            .first()
        )
        if existing is not None:
            raise ConflictError("Ya has tomado este curso anteriormente", existingCourseId=existing.id)

        clone = self._clone(original)
        self.db.add(clone)
        self.db.commit()
        self.db.refresh(clone)
        logger.info("Usuario %s tomó el curso %s (copia %s)", self.user.id, original.id, clone.id)
        return {
            "message": "Curso tomado exitosamente",
            "course": {
                "id": clone.id,
                "title": clone.title,
                "description": clone.description,
                "status": clone.status.value,
                "totalModules": clone.total_modules,
                "originalCourseId": clone.original_course_id,
            },
        }

    def _clone(self, original: Course) -> Course:
        author = original.owner
        clone = Course(
            user_id=self.user.id,
            user_prompt=original.user_prompt or f"Curso tomado de la comunidad: {original.title}",
            user_level=original.user_level,
            user_interests=list(original.user_interests or []),
            title=original.title,
            description=original.description,
            introduction=original.introduction,
            prerequisites=list(original.prerequisites or []),
            module_list=list(original.module_list or []),
            topics=list(original.topics or []),
            language=original.language,
            status=CourseStatus.READY,
            total_modules=original.total_modules,
            is_public=False,
            original_course_id=original.id,
            original_author_name=(author.full_name or author.username) if author else None,
        )
        for module in original.modules:
            copy = Module(module_order=module.module_order, title=module.title, description=module.description)
            for chunk in module.chunks:
                copy.chunks.append(
                    Chunk(
                        chunk_order=chunk.chunk_order,
                        title=chunk.title,
                        content=chunk.content,
                        video_data=chunk.video_data,
                    )
                )
            if module.quiz is not None:
                quiz = Quiz(title=module.quiz.title)
                for question in module.quiz.questions:
                    quiz.questions.append(
                        QuizQuestion(
                            question_order=question.question_order,
                            question=question.question,
                            options=list(question.options or []),
                            correct_answer=question.correct_answer,
                            explanation=question.explanation,
                        )
                    )
                copy.quiz = quiz
            clone.modules.append(copy)
        return clone

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _find_rating(self, course_id: int) -> Optional[CourseRating]:
        return (
            self.db.query(CourseRating)
            .filter(CourseRating.user_id == self.user.id, CourseRating.course_id == course_id)
            .first()
        )

    def _save_rating(self, course: Course, rating: int, comment: Optional[str]) -> CourseRating:
        existing = self._find_rating(course.id)
        if existing is None:
            existing = CourseRating(user_id=self.user.id, course_id=course.id, rating=rating, comment=comment)
            self.db.add(existing)
        else:
            existing.rating = rating
            existing.comment = comment
        self.db.flush()

        average, count = (
            self.db.query(func.avg(CourseRating.rating), func.count(CourseRating.id))
            .filter(CourseRating.course_id == course.id)
            .one()
        )
        course.average_rating = float(round_half_up(float(average or 0), 1))
        course.total_ratings = int(count or 0)
        self.db.commit()
        return existing

    def _require_community(self) -> None:
        if not can_access_community(self.user.plan):
            raise ForbiddenError("Plan insuficiente")

    def _require_publisher(self) -> None:
        if not can_publish(self.user.plan):
            raise ForbiddenError("Solo usuarios con plan MAESTRO pueden publicar cursos")

    def _get_own_course(self, course_id: int) -> Course:
        course = (
            self.db.query(Course)
            .filter(Course.id == course_id, Course.user_id == self.user.id, Course.deleted_at.is_(None))
            .first()
        )
        if course is None:
            raise NotFoundError("Curso no encontrado")
        return course

    def _get_public_course(self, course_id: int) -> Course:
        course = (
            self.db.query(Course)
            .filter(Course.id == course_id, Course.is_public.is_(True), Course.deleted_at.is_(None))
            .first()
        )
        if course is None:
            raise NotFoundError("Curso no encontrado")
        return course
