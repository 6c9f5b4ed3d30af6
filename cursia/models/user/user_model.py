from sqlalchemy import Integer, String, Boolean, DateTime, func, Enum, JSON
from sqlalchemy.orm import Mapped, mapped_column, relationship
from cursia.db.base_class import Base
from cursia.core.plans import UserPlan
from typing import List, Optional, TYPE_CHECKING
from datetime import datetime

if TYPE_CHECKING:
    from .subscription_model import Subscription
    from ..course.course_model import Course
    from ..progress.user_progress_model import UserProgress
    from ..progress.certificate_model import Certificate


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    username: Mapped[str] = mapped_column(String(50), unique=True, index=True, nullable=False)
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True, nullable=False)
    hashed_password: Mapped[str] = mapped_column(String, nullable=False)
    full_name: Mapped[Optional[str]] = mapped_column(String(255))
    level: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    interests: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    is_superuser: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    plan: Mapped[UserPlan] = mapped_column(
        Enum(UserPlan, name="userplan", values_callable=lambda obj: [e.value for e in obj]),
        nullable=False,
        default=UserPlan.FREE,
        server_default=UserPlan.FREE.value,
    )

    courses: Mapped[List["Course"]] = relationship(back_populates="owner", cascade="all, delete-orphan")
    subscriptions: Mapped[List["Subscription"]] = relationship(back_populates="user", cascade="all, delete-orphan")
    progress_entries: Mapped[List["UserProgress"]] = relationship(back_populates="user", cascade="all, delete-orphan")
    certificates: Mapped[List["Certificate"]] = relationship(back_populates="user", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<User(id={self.id}, username='{self.username}', plan={self.plan})>"
