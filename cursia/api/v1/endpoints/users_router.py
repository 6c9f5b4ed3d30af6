from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from cursia.api.v1.dependencies import get_current_user, get_db
from cursia.core.errors import ServiceError
from cursia.models.user.user_model import User
from cursia.services.user_service import public_profile

router = APIRouter()


@router.get("/{username}")
def read_public_profile(
    username: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    try:
        return public_profile(db, username)
    except ServiceError as exc:
        raise exc.to_http() from exc
