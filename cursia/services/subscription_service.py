"""Subscription lifecycle: Wompi webhooks, user actions and the expiration sweep."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from sqlalchemy import and_, exists
from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session, aliased

from cursia.core.config import settings
from cursia.core.errors import InvalidSignature, NotFoundError, ServiceError, ValidationError
from cursia.core.plans import PLAN_NAMES, UserPlan, plan_price_in_cents
from cursia.core.security import verify_hmac_signature
from cursia.db.retry import with_db_retry
from cursia.models.user.subscription_model import Subscription, SubscriptionStatus
from cursia.models.user.user_model import User
from cursia.services.wompi_client import WompiClient, create_subscription_reference

logger = logging.getLogger(__name__)

TRANSACTION_APPROVED = "APPROVED"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _normalize_datetime(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_provider_datetime(value: Any) -> Optional[datetime]:
    """Parse Wompi timestamps: ISO-8601 strings or epoch seconds."""

    if value in (None, ""):
        return None
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    if isinstance(value, str):
        try:
            return _normalize_datetime(datetime.fromisoformat(value.replace("Z", "+00:00")))
        except ValueError:
            logger.warning("Fecha de Wompi no reconocida: %s", value)
    return None


def _event_time(event: dict[str, Any]) -> Optional[datetime]:
    return parse_provider_datetime(event.get("timestamp")) or parse_provider_datetime(event.get("sent_at"))


def serialize_subscription(subscription: Subscription) -> dict[str, Any]:
    def iso(value):
        return value.isoformat() if value else None

    return {
        "id": subscription.id,
        "plan": subscription.plan.value,
        "planName": PLAN_NAMES[subscription.plan],
        "status": subscription.status.value,
        "reference": subscription.reference,
        "amountInCents": subscription.amount_in_cents,
        "currency": subscription.currency,
        "wompiSubscriptionId": subscription.wompi_subscription_id,
        "nextPaymentDate": iso(subscription.next_payment_date),
        "lastPaymentDate": iso(subscription.last_payment_date),
        "cancelledAt": iso(subscription.cancelled_at),
        "createdAt": iso(subscription.created_at),
    }


class SubscriptionReconciler:
    """Applies verified Wompi webhook events to subscription and plan state."""

    def __init__(self, db: Session, events_secret: Optional[str] = None):
        self.db = db
        self.events_secret = events_secret if events_secret is not None else settings.WOMPI_EVENTS_SECRET
        self._handlers: dict[str, Callable[[dict[str, Any], Optional[datetime]], bool]] = {
            "transaction.created": self._on_transaction,
            "transaction.updated": self._on_transaction,
            "subscription.created": self._on_subscription_change,
            "subscription.updated": self._on_subscription_change,
            "subscription.cancelled": self._on_subscription_cancelled,
        }

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def handle_webhook(self, raw_body: bytes, signature: Optional[str]) -> dict[str, Any]:
        if not verify_hmac_signature(raw_body, signature, self.events_secret):
            logger.warning("Firma de webhook de Wompi inválida")
            raise InvalidSignature()

        try:
            event = json.loads(raw_body)
        except ValueError as exc:
            raise ServiceError("Webhook processing failed", 500) from exc
        if not isinstance(event, dict):
            raise ServiceError("Webhook processing failed", 500)

        return self.apply_event(event)

    def apply_event(self, event: dict[str, Any]) -> dict[str, Any]:
        event_type = event.get("event")
        data = event.get("data") or {}
        logger.info("Webhook de Wompi recibido: %s", event_type)

        handler = self._handlers.get(event_type)
        if handler is None:
            logger.info("Evento de Wompi no manejado: %s", event_type)
            return {"received": True, "handled": False}

        try:
            applied = handler(data, _event_time(event))
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        return {"received": True, "handled": applied}

    # ------------------------------------------------------------------
    # Event handlers
    # ------------------------------------------------------------------
    def _on_transaction(self, data: dict[str, Any], event_at: Optional[datetime]) -> bool:
        transaction = data.get("transaction") or {}
        reference = transaction.get("reference")
        subscription = (
            self.db.query(Subscription).filter(Subscription.reference == reference).first()
            if reference
            else None
        )
        if subscription is None:
            logger.info("Suscripción no encontrada para la referencia %s", reference)
            return False
        if not self._accept_event(subscription, event_at):
            return False

        if transaction.get("status") == TRANSACTION_APPROVED:
            subscription.status = SubscriptionStatus.ACTIVE
            subscription.last_payment_date = parse_provider_datetime(transaction.get("created_at")) or _utcnow()
            logger.info("Pago aprobado para la suscripción %s", subscription.id)
        else:
            subscription.status = SubscriptionStatus.FAILED
            self._downgrade(subscription.user_id)
            logger.warning(
                "Pago %s para la suscripción %s; usuario %s pasa a FREE",
                transaction.get("status"),
                subscription.id,
                subscription.user_id,
            )
        return True

    def _on_subscription_change(self, data: dict[str, Any], event_at: Optional[datetime]) -> bool:
        payload = data.get("subscription") or {}
        subscription = self._find_by_provider_id(payload.get("id"))
        if subscription is None:
            return False
        if not self._accept_event(subscription, event_at):
            return False

        subscription.status = (
            SubscriptionStatus.ACTIVE if payload.get("status") == "ACTIVE" else SubscriptionStatus.INACTIVE
        )
        next_payment = parse_provider_datetime(payload.get("next_payment_date"))
        if next_payment is not None:
            subscription.next_payment_date = next_payment
        return True

    def _on_subscription_cancelled(self, data: dict[str, Any], event_at: Optional[datetime]) -> bool:
        payload = data.get("subscription") or {}
        subscription = self._find_by_provider_id(payload.get("id"))
        if subscription is None:
            return False
        if not self._accept_event(subscription, event_at):
            return False

        subscription.status = SubscriptionStatus.CANCELLED
        subscription.cancelled_at = _utcnow()
        self._downgrade(subscription.user_id)
        logger.info("Suscripción %s cancelada por Wompi", subscription.id)
        return True

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _find_by_provider_id(self, provider_id: Optional[str]) -> Optional[Subscription]:
        if not provider_id:
            return None
        subscription = (
            self.db.query(Subscription).filter(Subscription.wompi_subscription_id == str(provider_id)).first()
        )
        if subscription is None:
            logger.info("Suscripción de Wompi %s no encontrada", provider_id)
        return subscription

    def _accept_event(self, subscription: Subscription, event_at: Optional[datetime]) -> bool:
        last_event_at = _normalize_datetime(subscription.last_event_at)
        if event_at is not None and last_event_at is not None and event_at < last_event_at:
            logger.warning(
                "Evento fuera de orden para la suscripción %s (%s < %s); se ignora",
                subscription.id,
                event_at.isoformat(),
                last_event_at.isoformat(),
            )
            return False
        if event_at is not None:
            subscription.last_event_at = event_at
        return True

    def _downgrade(self, user_id: int) -> None:
        user = self.db.get(User, user_id)
        if user is not None:
            user.plan = UserPlan.FREE


class SubscriptionService:
    """User-facing subscription operations."""

    def __init__(self, db: Session, user: User, client: Optional[WompiClient] = None):
        self.db = db
        self.user = user
        self.client = client or WompiClient()

    def get_active(self) -> Optional[dict[str, Any]]:
        subscription = self._active_subscription()
        return serialize_subscription(subscription) if subscription else None

    def create(self, plan: UserPlan, payment_source_id: str, customer_email: Optional[str] = None) -> dict[str, Any]:
        if plan == UserPlan.FREE:
            raise ValidationError("Plan inválido")
        if self._active_subscription() is not None:
            raise ValidationError("Ya tienes una suscripción activa")

        amount = plan_price_in_cents(plan)
        reference = create_subscription_reference(self.user.id, plan)
        remote = self.client.create_subscription(
            customer_email=customer_email or self.user.email,
            amount_in_cents=amount,
            reference=reference,
            payment_source_id=payment_source_id,
        )

        subscription = Subscription(
            user_id=self.user.id,
            wompi_subscription_id=str(remote["id"]) if remote.get("id") else None,
            plan=plan,
            status=SubscriptionStatus.ACTIVE,
            reference=reference,
            amount_in_cents=amount,
            currency="COP",
            payment_method_token=payment_source_id,
            next_payment_date=parse_provider_datetime(remote.get("next_payment_date")),
        )
        self.db.add(subscription)
        self.user.plan = plan
        self.db.commit()
        self.db.refresh(subscription)

        logger.info("Suscripción %s creada para usuario %s (%s)", subscription.id, self.user.id, plan.value)
        return serialize_subscription(subscription)

    def cancel(self, subscription_id: int) -> dict[str, Any]:
        """Cancel at the provider; the plan is kept until the sweep or a failed payment."""

        subscription = (
            self.db.query(Subscription)
            .filter(Subscription.id == subscription_id, Subscription.user_id == self.user.id)
            .first()
        )
        if subscription is None:
            raise NotFoundError("Subscription not found")
        if subscription.status == SubscriptionStatus.CANCELLED:
            raise ValidationError("Subscription already cancelled")

        if subscription.wompi_subscription_id:
            self.client.cancel_subscription(subscription.wompi_subscription_id)

        subscription.status = SubscriptionStatus.CANCELLED
        subscription.cancelled_at = _utcnow()
        self.db.commit()
        self.db.refresh(subscription)

        logger.info("Suscripción %s cancelada por el usuario %s", subscription.id, self.user.id)
        return serialize_subscription(subscription)

    def _active_subscription(self) -> Optional[Subscription]:
        return (
            self.db.query(Subscription)
            .filter(Subscription.user_id == self.user.id, Subscription.status == SubscriptionStatus.ACTIVE)
            .order_by(Subscription.created_at.desc(), Subscription.id.desc())
            .first()
        )


def expire_cancelled_subscriptions(db: Session, now: Optional[datetime] = None) -> dict[str, Any]:
    """Downgrade users whose cancelled subscription ran past its paid period.

    Users already on FREE, or holding another ACTIVE subscription, are left
    alone, so running the sweep twice processes nothing the second time.
    """

    cutoff = now or _utcnow()
    other = aliased(Subscription)

    def _sweep() -> int:
        try:
            return _downgrade_expired()
        except DBAPIError:
            db.rollback()
            raise

    def _downgrade_expired() -> int:
        expired = (
            db.query(Subscription)
            .join(User, User.id == Subscription.user_id)
            .filter(
                Subscription.status == SubscriptionStatus.CANCELLED,
                Subscription.next_payment_date.is_not(None),
                Subscription.next_payment_date < cutoff,
                User.plan != UserPlan.FREE,
                ~exists().where(
                    and_(other.user_id == Subscription.user_id, other.status == SubscriptionStatus.ACTIVE)
                ),
            )
            .all()
        )
        if not expired:
            return 0

        user_ids = {subscription.user_id for subscription in expired}
        db.query(User).filter(User.id.in_(user_ids)).update(
            {User.plan: UserPlan.FREE}, synchronize_session=False
        )
        db.commit()
        return len(expired)

    try:
        processed = with_db_retry(_sweep)
    except Exception:
        db.rollback()
        raise

    logger.info("Barrido de suscripciones: %s usuarios pasan a FREE", processed)
    return {
        "success": True,
        "processed": processed,
        "message": f"Processed {processed} expired subscriptions",
    }
