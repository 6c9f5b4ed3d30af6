from datetime import datetime, timedelta, timezone

import pytest

from cursia.core.errors import InvalidSignature, NotFoundError, ValidationError
from cursia.core.plans import UserPlan
from cursia.models.user.subscription_model import Subscription, SubscriptionStatus
from cursia.services.subscription_service import (
    SubscriptionReconciler,
    SubscriptionService,
    expire_cancelled_subscriptions,
    parse_provider_datetime,
)
from tests.utils import create_subscription, create_user, signed_event


def _transaction_event(reference, status, timestamp=1700000100):
    return {
        "event": "transaction.updated",
        "data": {"transaction": {"id": "tx_1", "reference": reference, "status": status, "created_at": "2023-11-14T22:15:00Z"}},
        "timestamp": timestamp,
    }


def _subscription_event(event, provider_id, timestamp=1700000100, **fields):
    return {"event": event, "data": {"subscription": {"id": provider_id, **fields}}, "timestamp": timestamp}


@pytest.fixture()
def subscriber(db_session):
    return create_user(db_session, username="pagador", email="pagador@example.com", plan=UserPlan.APRENDIZ)


@pytest.fixture()
def subscription(db_session, subscriber):
    return create_subscription(db_session, subscriber)


class FakeWompiClient:
    def __init__(self):
        self.created = []
        self.cancelled = []

    def create_subscription(self, **kwargs):
        self.created.append(kwargs)
        return {"id": "sub_remote", "status": "ACTIVE", "next_payment_date": "2026-11-17T00:00:00Z"}

    def cancel_subscription(self, subscription_id):
        self.cancelled.append(subscription_id)
        return {"id": subscription_id, "status": "CANCELLED"}


# ---------------------------------------------------------------------------
# Webhook reconciliation
# ---------------------------------------------------------------------------


def test_tampered_signature_changes_nothing(db_session, subscriber, subscription):
    body, signature = signed_event(_transaction_event(subscription.reference, "DECLINED"))
    tampered = body.replace(b"DECLINED", b"APPROVED")

    with pytest.raises(InvalidSignature):
        SubscriptionReconciler(db_session).handle_webhook(tampered, signature)
    with pytest.raises(InvalidSignature):
        SubscriptionReconciler(db_session).handle_webhook(body, None)

    db_session.refresh(subscription)
    db_session.refresh(subscriber)
    assert subscription.status == SubscriptionStatus.ACTIVE
    assert subscription.last_event_at is None
    assert subscriber.plan == UserPlan.APRENDIZ


def test_approved_transaction_activates_subscription(db_session, subscriber):
    pending = create_subscription(db_session, subscriber, status=SubscriptionStatus.INACTIVE)
    body, signature = signed_event(_transaction_event(pending.reference, "APPROVED"))

    result = SubscriptionReconciler(db_session).handle_webhook(body, signature)

    assert result == {"received": True, "handled": True}
    db_session.refresh(pending)
    assert pending.status == SubscriptionStatus.ACTIVE
    assert pending.last_payment_date is not None
    assert pending.last_event_at is not None


@pytest.mark.parametrize("status", ["DECLINED", "ERROR", "VOIDED"])
def test_failed_transaction_downgrades_user(db_session, subscriber, subscription, status):
    body, signature = signed_event(_transaction_event(subscription.reference, status))

    SubscriptionReconciler(db_session).handle_webhook(body, signature)

    db_session.refresh(subscription)
    db_session.refresh(subscriber)
    assert subscription.status == SubscriptionStatus.FAILED
    assert subscriber.plan == UserPlan.FREE


def test_out_of_order_event_is_ignored(db_session, subscriber, subscription):
    reconciler = SubscriptionReconciler(db_session)
    newer = _transaction_event(subscription.reference, "APPROVED", timestamp=1700000200)
    older = _transaction_event(subscription.reference, "DECLINED", timestamp=1700000100)

    assert reconciler.apply_event(newer)["handled"] is True
    assert reconciler.apply_event(older)["handled"] is False

    db_session.refresh(subscription)
    db_session.refresh(subscriber)
    assert subscription.status == SubscriptionStatus.ACTIVE
    assert subscriber.plan == UserPlan.APRENDIZ


def test_subscription_cancelled_event_downgrades(db_session, subscriber, subscription):
    event = _subscription_event("subscription.cancelled", subscription.wompi_subscription_id)

    SubscriptionReconciler(db_session).apply_event(event)

    db_session.refresh(subscription)
    db_session.refresh(subscriber)
    assert subscription.status == SubscriptionStatus.CANCELLED
    assert subscription.cancelled_at is not None
    assert subscriber.plan == UserPlan.FREE


def test_subscription_updated_sets_status_and_next_payment(db_session, subscription):
    event = _subscription_event(
        "subscription.updated",
        subscription.wompi_subscription_id,
        status="PAUSED",
        next_payment_date="2026-12-01T00:00:00Z",
    )

    SubscriptionReconciler(db_session).apply_event(event)

    db_session.refresh(subscription)
    assert subscription.status == SubscriptionStatus.INACTIVE
    assert subscription.next_payment_date.replace(tzinfo=None) == datetime(2026, 12, 1)


def test_unknown_or_unmatched_events_are_acknowledged(db_session, subscription):
    reconciler = SubscriptionReconciler(db_session)

    assert reconciler.apply_event({"event": "nequi_token.updated", "data": {}}) == {"received": True, "handled": False}
    assert reconciler.apply_event(_transaction_event("cursia-unknown", "APPROVED"))["handled"] is False
    assert reconciler.apply_event(_subscription_event("subscription.cancelled", "sub_missing"))["handled"] is False


def test_parse_provider_datetime_formats():
    assert parse_provider_datetime("2026-01-02T03:04:05Z") == datetime(2026, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
    assert parse_provider_datetime(0) == datetime(1970, 1, 1, tzinfo=timezone.utc)
    assert parse_provider_datetime("not a date") is None
    assert parse_provider_datetime(None) is None


# ---------------------------------------------------------------------------
# User actions
# ---------------------------------------------------------------------------


def test_create_subscription_upgrades_plan(db_session):
    user = create_user(db_session)
    client = FakeWompiClient()

    result = SubscriptionService(db_session, user, client=client).create(UserPlan.EXPERTO, "tok_test_123")

    db_session.refresh(user)
    assert user.plan == UserPlan.EXPERTO
    assert result["plan"] == "EXPERTO"
    assert result["wompiSubscriptionId"] == "sub_remote"
    assert result["reference"].startswith(f"cursia-experto-{user.id}-")
    assert client.created[0]["payment_source_id"] == "tok_test_123"
    assert client.created[0]["customer_email"] == user.email


def test_create_rejects_free_plan_and_duplicates(db_session, subscriber, subscription):
    service = SubscriptionService(db_session, subscriber, client=FakeWompiClient())
    with pytest.raises(ValidationError):
        service.create(UserPlan.FREE, "tok")
    with pytest.raises(ValidationError):
        service.create(UserPlan.MAESTRO, "tok")


def test_cancel_keeps_plan_until_sweep(db_session, subscriber, subscription):
    client = FakeWompiClient()
    service = SubscriptionService(db_session, subscriber, client=client)

    result = service.cancel(subscription.id)

    assert result["status"] == "CANCELLED"
    assert client.cancelled == [subscription.wompi_subscription_id]
    db_session.refresh(subscriber)
    assert subscriber.plan == UserPlan.APRENDIZ

    with pytest.raises(ValidationError):
        service.cancel(subscription.id)


def test_cancel_other_users_subscription_is_not_found(db_session, subscription):
    stranger = create_user(db_session, username="ajeno", email="ajeno@example.com")
    with pytest.raises(NotFoundError):
        SubscriptionService(db_session, stranger, client=FakeWompiClient()).cancel(subscription.id)


# ---------------------------------------------------------------------------
# Expiration sweep
# ---------------------------------------------------------------------------


def test_sweep_downgrades_expired_cancellations(db_session, subscriber):
    now = datetime.now(timezone.utc)
    create_subscription(
        db_session,
        subscriber,
        status=SubscriptionStatus.CANCELLED,
        next_payment_date=now - timedelta(days=1),
        cancelled_at=now - timedelta(days=20),
    )

    result = expire_cancelled_subscriptions(db_session, now=now)

    assert result == {"success": True, "processed": 1, "message": "Processed 1 expired subscriptions"}
    db_session.refresh(subscriber)
    assert subscriber.plan == UserPlan.FREE

    again = expire_cancelled_subscriptions(db_session, now=now)
    assert again["processed"] == 0


def test_sweep_ignores_future_dates_and_active_plans(db_session, subscriber):
    now = datetime.now(timezone.utc)
    create_subscription(
        db_session,
        subscriber,
        status=SubscriptionStatus.CANCELLED,
        next_payment_date=now + timedelta(days=5),
    )
    renewed = create_user(db_session, username="renovado", email="renovado@example.com", plan=UserPlan.EXPERTO)
    create_subscription(
        db_session,
        renewed,
        status=SubscriptionStatus.CANCELLED,
        next_payment_date=now - timedelta(days=3),
        reference="cursia-aprendiz-old",
        wompi_subscription_id="sub_old",
    )
    create_subscription(
        db_session,
        renewed,
        plan=UserPlan.EXPERTO,
        reference="cursia-experto-new",
        wompi_subscription_id="sub_new",
    )

    assert expire_cancelled_subscriptions(db_session, now=now)["processed"] == 0

    db_session.refresh(subscriber)
    db_session.refresh(renewed)
    assert subscriber.plan == UserPlan.APRENDIZ
    assert renewed.plan == UserPlan.EXPERTO
    assert db_session.query(Subscription).count() == 3
