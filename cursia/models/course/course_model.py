from __future__ import annotations

import enum
from datetime import datetime
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from cursia.db.base_class import Base

if TYPE_CHECKING:
    from ..user.user_model import User
    from .module_model import Module
    from .rating_model import CourseRating
    from ..progress.user_progress_model import UserProgress
    from ..progress.certificate_model import Certificate


class CourseStatus(str, enum.Enum):
    GENERATING_METADATA = "GENERATING_METADATA"
    METADATA_READY = "METADATA_READY"
    GENERATING_MODULE_1 = "GENERATING_MODULE_1"
    READY = "READY"
    GENERATING_REMAINING = "GENERATING_REMAINING"
    COMPLETE = "COMPLETE"
    FAILED = "FAILED"

    @property
    def is_generating(self) -> bool:
        return self.value.startswith("GENERATING_")


class Course(Base):
    __tablename__ = "courses"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id", ondelete="CASCADE"), index=True)

    user_prompt: Mapped[str] = mapped_column(Text, nullable=False)
    user_level: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    user_interests: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)

    title: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    introduction: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    prerequisites: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    module_list: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    topics: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    language: Mapped[str] = mapped_column(String(8), nullable=False, default="es", server_default="es")

    status: Mapped[CourseStatus] = mapped_column(
        Enum(CourseStatus, name="coursestatus", values_callable=lambda obj: [e.value for e in obj]),
        nullable=False,
        default=CourseStatus.GENERATING_METADATA,
        index=True,
    )
    total_modules: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")

    # Comunidad
    is_public: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="0")
    published_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    average_rating: Mapped[float] = mapped_column(Float, nullable=False, default=0.0, server_default="0")
    total_ratings: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    total_completions: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    original_course_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("courses.id", ondelete="SET NULL"), nullable=True, index=True
    )
    original_author_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True, index=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    owner: Mapped["User"] = relationship(back_populates="courses")
    modules: Mapped[List["Module"]] = relationship(
        back_populates="course",
        cascade="all, delete-orphan",
        order_by="Module.module_order",
    )
    ratings: Mapped[List["CourseRating"]] = relationship(back_populates="course", cascade="all, delete-orphan")
    progress_entries: Mapped[List["UserProgress"]] = relationship(back_populates="course", cascade="all, delete-orphan")
    certificates: Mapped[List["Certificate"]] = relationship(back_populates="course", cascade="all, delete-orphan")
    generation_logs: Mapped[List["GenerationLog"]] = relationship(back_populates="course", cascade="all, delete-orphan")

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"<Course(id={self.id}, title='{self.title}', status={self.status})>"


class GenerationLog(Base):
    __tablename__ = "generation_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    course_id: Mapped[int] = mapped_column(Integer, ForeignKey("courses.id", ondelete="CASCADE"), index=True)
    action: Mapped[str] = mapped_column(String(100), nullable=False)
    message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    course: Mapped[Course] = relationship(back_populates="generation_logs")
