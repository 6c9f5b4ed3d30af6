from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Integer, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from cursia.db.base_class import Base

if TYPE_CHECKING:
    from ..course.course_model import Course
    from ..user.user_model import User


class UserProgress(Base):
    """Per-user, per-course completion state.

    ``completed_chunks`` and ``completed_modules`` are JSON lists of ids. They
    are always reassigned (never mutated in place) so SQLAlchemy tracks the
    change.
    """

    __tablename__ = "user_progress"
    __table_args__ = (UniqueConstraint("user_id", "course_id", name="uq_user_progress_user_course"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id", ondelete="CASCADE"), index=True)
    course_id: Mapped[int] = mapped_column(Integer, ForeignKey("courses.id", ondelete="CASCADE"), index=True)
    completed_chunks: Mapped[List[int]] = mapped_column(JSON, nullable=False, default=list)
    completed_modules: Mapped[List[int]] = mapped_column(JSON, nullable=False, default=list)
    current_module_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    current_chunk_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    user: Mapped["User"] = relationship(back_populates="progress_entries")
    course: Mapped["Course"] = relationship(back_populates="progress_entries")
    quiz_attempts: Mapped[List["QuizAttempt"]] = relationship(
        back_populates="progress",
        cascade="all, delete-orphan",
        order_by="QuizAttempt.attempted_at",
    )


class QuizAttempt(Base):
    __tablename__ = "quiz_attempts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    progress_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("user_progress.id", ondelete="CASCADE"), index=True
    )
    module_id: Mapped[int] = mapped_column(Integer, ForeignKey("modules.id", ondelete="CASCADE"), index=True)
    quiz_id: Mapped[int] = mapped_column(Integer, ForeignKey("quizzes.id", ondelete="CASCADE"))
    answers: Mapped[List[int]] = mapped_column(JSON, nullable=False, default=list)
    score: Mapped[int] = mapped_column(Integer, nullable=False)
    passed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    attempted_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc)
    )

    progress: Mapped[UserProgress] = relationship(back_populates="quiz_attempts")
