import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from cursia.api.v1.dependencies import get_db
from cursia.core.config import settings
from cursia.core.security import verify_bearer_secret
from cursia.services.subscription_service import expire_cancelled_subscriptions

router = APIRouter()
logger = logging.getLogger(__name__)


def require_cron_secret(request: Request) -> None:
    if not verify_bearer_secret(request.headers.get("Authorization"), settings.CRON_SECRET):
        logger.warning("Llamada al cron sin autorización válida")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")


@router.get("/expire-subscriptions", dependencies=[Depends(require_cron_secret)])
@router.post("/expire-subscriptions", dependencies=[Depends(require_cron_secret)])
def expire_subscriptions(db: Session = Depends(get_db)):
    return expire_cancelled_subscriptions(db)
