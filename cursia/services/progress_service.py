"""Learner progress: chunk completion, quiz attempts and course finalization."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Iterable, Sequence

from sqlalchemy import or_
from sqlalchemy.orm import Session, selectinload

from cursia.core.errors import ForbiddenError, NotFoundError, ValidationError
from cursia.core.plans import FREE_MAX_MODULE_ORDER, UserPlan, can_access_community
from cursia.models.course.course_model import Course
from cursia.models.course.module_model import Chunk, Module, Quiz, QuizQuestion
from cursia.models.progress.user_progress_model import QuizAttempt, UserProgress
from cursia.models.user.user_model import User
from cursia.services.certificate_service import CertificateService
from cursia.utils.math_utils import percentage, round_half_up

logger = logging.getLogger(__name__)

PASSING_SCORE = 50


@dataclass(slots=True)
class QuizScore:
    correct_answers: int
    total_questions: int
    score: int
    passed: bool
    details: list[dict[str, Any]]


def score_quiz(questions: Sequence[QuizQuestion], answers: Sequence[int]) -> QuizScore:
    """Compare answers positionally with each question's correct option."""

    details: list[dict[str, Any]] = []
    correct = 0
    for index, question in enumerate(questions):
        user_answer = answers[index] if index < len(answers) else None
        is_correct = user_answer is not None and user_answer == question.correct_answer
        if is_correct:
            correct += 1
        details.append(
            {
                "questionId": question.id,
                "question": question.question,
                "userAnswer": user_answer,
                "correctAnswer": question.correct_answer,
                "isCorrect": is_correct,
                "explanation": question.explanation,
            }
        )

    total = len(questions)
    score = round_half_up(correct / total * 100) if total else 0
    return QuizScore(
        correct_answers=correct,
        total_questions=total,
        score=score,
        passed=score >= PASSING_SCORE,
        details=details,
    )


def _union(existing: Iterable[int] | None, value: int) -> list[int]:
    items = list(existing or [])
    if value not in items:
        items.append(value)
    return items


def _serialize_attempt(attempt: QuizAttempt) -> dict[str, Any]:
    return {
        "id": attempt.id,
        "moduleId": attempt.module_id,
        "quizId": attempt.quiz_id,
        "answers": list(attempt.answers or []),
        "score": attempt.score,
        "passed": attempt.passed,
        "attemptedAt": attempt.attempted_at.isoformat() if attempt.attempted_at else None,
    }


class ProgressService:
    def __init__(self, db: Session, user: User):
        self.db = db
        self.user = user

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def get_progress(self, course_id: int) -> dict[str, Any]:
        course = self._get_accessible_course(course_id)
        progress = self._find_progress(course.id)
        if progress is None:
            return {
                "completedChunks": [],
                "completedModules": [],
                "moduleProgress": {},
                "completionPercentage": 0,
                "currentModuleId": None,
                "currentChunkId": None,
                "completedAt": None,
            }

        completed_chunks = list(progress.completed_chunks or [])
        return {
            "completedChunks": completed_chunks,
            "completedModules": list(progress.completed_modules or []),
            "moduleProgress": self._module_progress(course, completed_chunks),
            "completionPercentage": self._completion_percentage(course, completed_chunks),
            "currentModuleId": progress.current_module_id,
            "currentChunkId": progress.current_chunk_id,
            "completedAt": progress.completed_at.isoformat() if progress.completed_at else None,
        }

    def ensure_progress(self, course: Course) -> UserProgress:
        """Create the progress row on first start, pointing at module 1."""

        progress = self._find_progress(course.id)
        if progress is not None:
            return progress

        first_module = course.modules[0] if course.modules else None
        first_chunk = first_module.chunks[0] if first_module and first_module.chunks else None
        if first_chunk is None:
            raise ValidationError("Course content not ready")

        progress = UserProgress(
            user_id=self.user.id,
            course_id=course.id,
            completed_chunks=[],
            completed_modules=[],
            current_module_id=first_module.id,
            current_chunk_id=first_chunk.id,
        )
        self.db.add(progress)
        self.db.commit()
        self.db.refresh(progress)
        logger.info("Progreso creado para usuario %s en curso %s", self.user.id, course.id)
        return progress

    def mark_chunk_complete(self, course_id: int, chunk_id: int, *, update_position: bool = False) -> dict[str, Any]:
        # Los cursos de la comunidad se avanzan sobre la copia tomada.
        course = self._get_owned_course(course_id)

        chunk = (
            self.db.query(Chunk)
            .join(Module, Chunk.module_id == Module.id)
            .filter(Chunk.id == chunk_id, Module.course_id == course.id)
            .first()
        )
        if chunk is None:
            raise NotFoundError("Chunk not found")

        progress = self._find_progress(course.id)
        if progress is None:
            raise ValidationError("Course must be started before marking chunks as complete")

        if (
            self.user.plan == UserPlan.FREE
            and chunk.module.module_order > FREE_MAX_MODULE_ORDER
            and not update_position
        ):
            raise ForbiddenError(
                "Tu plan de prueba permite acceder solo a los primeros 2 módulos de cada curso.",
                upgradeRequired=True,
                maxModulesAllowed=FREE_MAX_MODULE_ORDER,
            )

        completed_chunks = list(progress.completed_chunks or [])
        if not update_position:
            completed_chunks = _union(completed_chunks, chunk.id)

        progress.completed_chunks = completed_chunks
        progress.current_module_id = chunk.module_id
        progress.current_chunk_id = chunk.id
        self.db.commit()

        return {
            "completionPercentage": self._completion_percentage(course, completed_chunks),
            "moduleProgress": self._module_progress(course, completed_chunks),
            "currentModuleId": progress.current_module_id,
            "currentChunkId": progress.current_chunk_id,
        }

    def submit_quiz_attempt(self, module_id: int, answers: Sequence[int]) -> dict[str, Any]:
        module = self._get_owned_module(module_id)
        quiz = self.db.query(Quiz).filter(Quiz.module_id == module.id).first()
        if quiz is None:
            raise NotFoundError("Quiz not found")

        progress = self._find_progress(module.course_id)
        if progress is None:
            raise ValidationError("Course must be started before taking quizzes")

        result = score_quiz(quiz.questions, list(answers))

        progress.quiz_attempts.append(
            QuizAttempt(
                module_id=module.id,
                quiz_id=quiz.id,
                answers=list(answers),
                score=result.score,
                passed=result.passed,
                attempted_at=datetime.now(timezone.utc),
            )
        )
        if result.passed:
            progress.completed_modules = _union(progress.completed_modules, module.id)
        self.db.commit()

        logger.info(
            "Quiz del módulo %s: usuario %s obtuvo %s%% (%s)",
            module.id,
            self.user.id,
            result.score,
            "aprobado" if result.passed else "no aprobado",
        )

        return {
            "passed": result.passed,
            "score": result.score,
            "correctAnswers": result.correct_answers,
            "totalQuestions": result.total_questions,
            "details": result.details,
        }

    def get_quiz_attempts(self, module_id: int) -> dict[str, Any]:
        module = self._get_owned_module(module_id)
        progress = self._find_progress(module.course_id)

        attempts: list[QuizAttempt] = []
        if progress is not None:
            attempts = (
                self.db.query(QuizAttempt)
                .filter(QuizAttempt.progress_id == progress.id, QuizAttempt.module_id == module.id)
                .order_by(QuizAttempt.attempted_at.asc(), QuizAttempt.id.asc())
                .all()
            )

        serialized = [_serialize_attempt(attempt) for attempt in attempts]
        return {
            "attempts": serialized,
            "bestScore": max((attempt.score for attempt in attempts), default=0),
            "passed": any(attempt.passed for attempt in attempts),
            "totalAttempts": len(attempts),
            "latestAttempt": serialized[-1] if serialized else None,
        }

    def finalize_course(self, course_id: int) -> dict[str, Any]:
        course = self._get_owned_course(course_id)
        progress = self._find_progress(course.id)
        if progress is None:
            raise NotFoundError("Progress not found")

        certificates = CertificateService(self.db, self.user)

        if progress.completed_at is not None:
            certificate = certificates.issue_for_progress(course, progress)
            return self._finalized_payload(course, progress, certificate, already_completed=True)

        all_chunk_ids = [chunk.id for module in course.modules for chunk in module.chunks]
        completed = set(progress.completed_chunks or [])
        completed_count = sum(1 for chunk_id in all_chunk_ids if chunk_id in completed)
        if completed_count != len(all_chunk_ids):
            raise ValidationError(
                "Course not fully completed",
                completedChunks=completed_count,
                totalChunks=len(all_chunk_ids),
            )

        passed_modules = {
            module_id
            for (module_id,) in self.db.query(QuizAttempt.module_id)
            .filter(QuizAttempt.progress_id == progress.id, QuizAttempt.passed.is_(True))
            .distinct()
        }
        for module in course.modules:
            if module.quiz is not None and module.id not in passed_modules:
                raise ValidationError(
                    f"Quiz del módulo {module.module_order} no aprobado",
                    moduleId=module.id,
                    moduleOrder=module.module_order,
                    moduleTitle=module.title,
                )

        progress.completed_at = datetime.now(timezone.utc)
        course.total_completions = (course.total_completions or 0) + 1
        self.db.commit()
        self.db.refresh(progress)

        certificate = certificates.issue_for_progress(course, progress)
        logger.info("Curso %s finalizado por usuario %s", course.id, self.user.id)
        return self._finalized_payload(course, progress, certificate, already_completed=False)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _find_progress(self, course_id: int) -> UserProgress | None:
        return (
            self.db.query(UserProgress)
            .filter(UserProgress.user_id == self.user.id, UserProgress.course_id == course_id)
            .first()
        )

    def _course_query(self):
        return self.db.query(Course).options(
            selectinload(Course.modules).selectinload(Module.chunks),
            selectinload(Course.modules).selectinload(Module.quiz),
        )

    def _get_owned_course(self, course_id: int) -> Course:
        course = (
            self._course_query()
            .filter(Course.id == course_id, Course.user_id == self.user.id, Course.deleted_at.is_(None))
            .first()
        )
        if course is None:
            raise NotFoundError("Course not found")
        return course

    def _get_accessible_course(self, course_id: int) -> Course:
        visibility = [Course.user_id == self.user.id]
        if can_access_community(self.user.plan):
            visibility.append(Course.is_public.is_(True))

        course = (
            self._course_query()
            .filter(Course.id == course_id, Course.deleted_at.is_(None), or_(*visibility))
            .first()
        )
        if course is None:
            raise NotFoundError("Course not found")
        return course

    def _get_owned_module(self, module_id: int) -> Module:
        module = (
            self.db.query(Module)
            .join(Course, Module.course_id == Course.id)
            .filter(
                Module.id == module_id,
                Course.user_id == self.user.id,
                Course.deleted_at.is_(None),
            )
            .first()
        )
        if module is None:
            raise NotFoundError("Module not found")
        return module

    @staticmethod
    def _completion_percentage(course: Course, completed_chunks: Sequence[int]) -> int:
        all_chunk_ids = {chunk.id for module in course.modules for chunk in module.chunks}
        done = sum(1 for chunk_id in set(completed_chunks) if chunk_id in all_chunk_ids)
        return percentage(done, len(all_chunk_ids))

    @staticmethod
    def _module_progress(course: Course, completed_chunks: Sequence[int]) -> dict[str, int]:
        completed = set(completed_chunks)
        return {
            str(module.module_order): percentage(
                sum(1 for chunk in module.chunks if chunk.id in completed),
                len(module.chunks),
            )
            for module in course.modules
        }

    @staticmethod
    def _finalized_payload(course, progress, certificate, *, already_completed: bool) -> dict[str, Any]:
        return {
            "success": True,
            "alreadyCompleted": already_completed,
            "courseId": course.id,
            "completedAt": progress.completed_at.isoformat() if progress.completed_at else None,
            "certificateId": certificate.id,
        }
