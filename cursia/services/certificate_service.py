from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from cursia.core.config import settings
from cursia.core.errors import NotFoundError, ValidationError
from cursia.models.course.course_model import Course
from cursia.models.progress.certificate_model import Certificate
from cursia.models.progress.user_progress_model import UserProgress
from cursia.models.user.user_model import User

logger = logging.getLogger(__name__)


def verification_url(certificate_id: str) -> str:
    base_url = str(settings.APP_BASE_URL).rstrip("/")
    return f"{base_url}/verify-certificate/{certificate_id}"


def _iso(value) -> str | None:
    return value.isoformat() if value else None


def verify_certificate(db: Session, certificate_id: str) -> dict[str, Any]:
    """Public lookup used by the verification page. No authentication."""

    certificate = db.get(Certificate, certificate_id)
    if certificate is None:
        raise NotFoundError("Certificate not found", valid=False)

    user = certificate.user
    return {
        "valid": True,
        "certificate": {
            "id": certificate.id,
            "userName": user.full_name or user.username,
            "courseTitle": certificate.course.title,
            "completedAt": _iso(certificate.completed_at),
            "createdAt": _iso(certificate.created_at),
        },
    }


class CertificateService:
    def __init__(self, db: Session, user: User):
        self.db = db
        self.user = user

    def generate(self, course_id: int) -> dict[str, Any]:
        course = (
            self.db.query(Course)
            .filter(Course.id == course_id, Course.deleted_at.is_(None))
            .first()
        )
        if course is None:
            raise NotFoundError("Course not found")

        progress = (
            self.db.query(UserProgress)
            .filter(UserProgress.user_id == self.user.id, UserProgress.course_id == course.id)
            .first()
        )
        if progress is None or progress.completed_at is None:
            raise ValidationError("Course not completed")

        certificate = self.issue_for_progress(course, progress)
        return self._serialize(certificate, course)

    def issue_for_progress(self, course: Course, progress: UserProgress) -> Certificate:
        """Return the (user, course) certificate, creating it once."""

        if progress.completed_at is None:
            raise ValidationError("Course not completed")

        existing = self._find(course.id)
        if existing is not None:
            return existing

        certificate = Certificate(
            user_id=self.user.id,
            course_id=course.id,
            completed_at=progress.completed_at,
        )
        self.db.add(certificate)
        try:
            self.db.commit()
        except IntegrityError:
            # Emisión concurrente: otra petición ya lo creó.
            self.db.rollback()
            existing = self._find(course.id)
            if existing is None:
                raise
            return existing

        self.db.refresh(certificate)
        logger.info("Certificado %s emitido para usuario %s (curso %s)", certificate.id, self.user.id, course.id)
        return certificate

    def list_for_user(self) -> list[dict[str, Any]]:
        certificates = (
            self.db.query(Certificate)
            .filter(Certificate.user_id == self.user.id)
            .order_by(Certificate.created_at.desc())
            .all()
        )
        return [self._serialize(certificate, certificate.course) for certificate in certificates]

    def _find(self, course_id: int) -> Certificate | None:
        return (
            self.db.query(Certificate)
            .filter(Certificate.user_id == self.user.id, Certificate.course_id == course_id)
            .first()
        )

    @staticmethod
    def _serialize(certificate: Certificate, course: Course) -> dict[str, Any]:
        return {
            "id": certificate.id,
            "courseId": course.id,
            "courseTitle": course.title,
            "completedAt": _iso(certificate.completed_at),
            "createdAt": _iso(certificate.created_at),
            "verificationUrl": verification_url(certificate.id),
        }
