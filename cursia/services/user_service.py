"""Account settings: profile, plan usage, manual plan changes and interests."""

from __future__ import annotations

import logging
from typing import Any, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from cursia.core.errors import NotFoundError, ValidationError
from cursia.core.plans import (
    MAX_COURSES_PER_MONTH,
    PLAN_NAMES,
    PLAN_PRICES,
    UserPlan,
    can_access_community,
    can_publish,
    coerce_plan,
    remaining_courses,
)
from cursia.crud import user_crud
from cursia.models.course.course_model import Course
from cursia.models.user.user_model import User
from cursia.services.community_service import serialize_public_course
from cursia.services.course_service import CourseService

logger = logging.getLogger(__name__)

EMAIL_TAKEN = "Este email ya está en uso por otro usuario"


def plan_limits(plan: UserPlan) -> dict[str, Any]:
    return {
        "maxCoursesPerMonth": MAX_COURSES_PER_MONTH[plan],
        "fullCourseAccess": plan != UserPlan.FREE,
        "canAccessCommunity": can_access_community(plan),
        "canPublish": can_publish(plan),
    }


class UserService:
    def __init__(self, db: Session, user: User):
        self.db = db
        self.user = user

    def get_profile(self) -> dict[str, Any]:
        return {"success": True, "user": {**self._profile(), "interests": list(self.user.interests or [])}}

    def update_profile(self, *, name: Optional[str] = None, email: Optional[str] = None) -> dict[str, Any]:
        if email is not None:
            email = email.lower()
            owner = user_crud.get_user_by_email(self.db, email)
            if owner is not None and owner.id != self.user.id:
                raise ValidationError(EMAIL_TAKEN)
            self.user.email = email
        if name is not None:
            self.user.full_name = name

        try:
            self.db.commit()
        except IntegrityError as exc:
            # Otro registro tomó el email entre la consulta y el commit.
            self.db.rollback()
            raise ValidationError(EMAIL_TAKEN) from exc

        logger.info("Perfil del usuario %s actualizado", self.user.id)
        return {"success": True, "message": "Perfil actualizado correctamente", "user": self._profile()}

    def get_plan(self) -> dict[str, Any]:
        plan = coerce_plan(self.user.plan)
        used = CourseService(self.db, self.user).courses_created_this_month()
        remaining = remaining_courses(plan, used)
        return {
            "currentPlan": plan.value,
            "planName": PLAN_NAMES[plan],
            "planPrice": PLAN_PRICES[plan],
            "limits": plan_limits(plan),
            "usage": {
                "coursesCreatedThisMonth": used,
                "remainingCourses": remaining,
                "canCreateCourse": remaining > 0,
            },
        }

    def update_plan(self, plan: UserPlan, *, changed_by: Optional[int] = None) -> dict[str, Any]:
        previous = coerce_plan(self.user.plan)
        self.user.plan = plan
        self.db.commit()
        logger.info(
            "Plan del usuario %s actualizado manualmente por %s: %s -> %s",
            self.user.id,
            changed_by,
            previous.value,
            plan.value,
        )
        return {"success": True, "plan": plan.value, "planName": PLAN_NAMES[plan]}

    def update_interests(self, interests: list[str]) -> dict[str, Any]:
        self.user.interests = list(interests)
        self.db.commit()
        return {"success": True, "interests": list(self.user.interests)}

    def _profile(self) -> dict[str, Any]:
        return {
            "id": self.user.id,
            "name": self.user.full_name,
            "email": self.user.email,
            "username": self.user.username,
        }


def public_profile(db: Session, username: str) -> dict[str, Any]:
    """Public page of a user: their community courses plus aggregate counters."""

    user = user_crud.get_user_by_username(db, username)
    if user is None:
        raise NotFoundError("Usuario no encontrado")

    courses = (
        db.query(Course)
        .options(selectinload(Course.owner))
        .filter(Course.user_id == user.id, Course.is_public.is_(True), Course.deleted_at.is_(None))
        .order_by(Course.created_at.desc(), Course.id.desc())
        .all()
    )
    return {
        "user": {
            "id": user.id,
            "name": user.full_name,
            "username": user.username,
            "plan": coerce_plan(user.plan).value,
            "level": user.level,
            "createdAt": user.created_at.isoformat() if user.created_at else None,
        },
        "metrics": {
            "publicCourses": len(courses),
            "totalCompletions": sum(course.total_completions or 0 for course in courses),
            "totalRatings": sum(course.total_ratings or 0 for course in courses),
        },
        "courses": [serialize_public_course(course) for course in courses],
    }
