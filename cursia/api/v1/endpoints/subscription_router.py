from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from cursia.api.v1.dependencies import get_current_user, get_db
from cursia.core.errors import ServiceError
from cursia.models.user.user_model import User
from cursia.schemas.subscription_schema import SubscriptionCreate
from cursia.services.subscription_service import SubscriptionService

router = APIRouter()


@router.get("")
def get_subscription(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return {"subscription": SubscriptionService(db, current_user).get_active()}


@router.post("", status_code=status.HTTP_201_CREATED)
def create_subscription(
    payload: SubscriptionCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    try:
        subscription = SubscriptionService(db, current_user).create(
            payload.plan, payload.payment_source_id, payload.customer_email
        )
    except ServiceError as exc:
        raise exc.to_http() from exc
    return {"success": True, "subscription": subscription}


@router.post("/{subscription_id}/cancel")
def cancel_subscription(
    subscription_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    try:
        subscription = SubscriptionService(db, current_user).cancel(subscription_id)
    except ServiceError as exc:
        raise exc.to_http() from exc
    return {"success": True, "subscription": subscription}
