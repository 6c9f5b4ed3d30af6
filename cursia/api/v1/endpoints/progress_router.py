from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from cursia.api.v1.dependencies import get_current_user, get_db
from cursia.core.errors import ServiceError
from cursia.models.user.user_model import User
from cursia.schemas.progress_schema import MarkChunkComplete
from cursia.services.progress_service import ProgressService

router = APIRouter()


@router.get("/{course_id}")
def get_progress(
    course_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    try:
        return ProgressService(db, current_user).get_progress(course_id)
    except ServiceError as exc:
        raise exc.to_http() from exc


@router.post("/{course_id}/mark-chunk-complete")
def mark_chunk_complete(
    course_id: int,
    payload: MarkChunkComplete,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    try:
        return ProgressService(db, current_user).mark_chunk_complete(
            course_id, payload.chunk_id, update_position=payload.update_position
        )
    except ServiceError as exc:
        raise exc.to_http() from exc
