from __future__ import annotations

import enum
from datetime import datetime
from typing import TYPE_CHECKING, Optional

from sqlalchemy import DateTime, Enum, ForeignKey, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from cursia.core.plans import UserPlan
from cursia.db.base_class import Base

if TYPE_CHECKING:
    from .user_model import User


class SubscriptionStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    CANCELLED = "CANCELLED"
    FAILED = "FAILED"
    INACTIVE = "INACTIVE"


class Subscription(Base):
    __tablename__ = "subscriptions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id", ondelete="CASCADE"), index=True)
    wompi_subscription_id: Mapped[Optional[str]] = mapped_column(String(255), unique=True, nullable=True)
    plan: Mapped[UserPlan] = mapped_column(
        Enum(UserPlan, name="userplan", values_callable=lambda obj: [e.value for e in obj]),
        nullable=False,
    )
    status: Mapped[SubscriptionStatus] = mapped_column(
        Enum(SubscriptionStatus, name="subscriptionstatus", values_callable=lambda obj: [e.value for e in obj]),
        nullable=False,
        default=SubscriptionStatus.ACTIVE,
        index=True,
    )
    # Formato: cursia-{plan}-{userId}-{timestamp}
    reference: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    amount_in_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="COP", server_default="COP")
    payment_method_token: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    next_payment_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    last_payment_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    # Marca del último evento de webhook aplicado; los eventos más antiguos se ignoran.
    last_event_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    user: Mapped["User"] = relationship(back_populates="subscriptions")

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"<Subscription(id={self.id}, user_id={self.user_id}, status={self.status})>"
