from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from cursia.api.v1.dependencies import get_current_user, get_db
from cursia.core.errors import ServiceError
from cursia.models.user.user_model import User
from cursia.schemas.progress_schema import QuizAttemptCreate
from cursia.services.progress_service import ProgressService

router = APIRouter()


@router.post("")
def submit_quiz_attempt(
    payload: QuizAttemptCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    try:
        return ProgressService(db, current_user).submit_quiz_attempt(payload.module_id, payload.answers)
    except ServiceError as exc:
        raise exc.to_http() from exc


@router.get("/{module_id}")
def get_quiz_attempts(
    module_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    try:
        return ProgressService(db, current_user).get_quiz_attempts(module_id)
    except ServiceError as exc:
        raise exc.to_http() from exc
