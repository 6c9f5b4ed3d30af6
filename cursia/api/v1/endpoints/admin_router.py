from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from cursia.api.v1.dependencies import get_current_superuser, get_db, get_queue_service
from cursia.core.errors import ServiceError
from cursia.crud import user_crud
from cursia.models.user.user_model import User
from cursia.schemas.course_schema import RegenerateModulesPayload
from cursia.schemas.user_schema import PlanUpdate
from cursia.services.course_service import CourseService
from cursia.services.queue_service import QueueService
from cursia.services.user_service import UserService

router = APIRouter()


@router.post("/regenerate-modules")
def regenerate_modules(
    payload: RegenerateModulesPayload,
    db: Session = Depends(get_db),
    admin: User = Depends(get_current_superuser),
    queue: QueueService = Depends(get_queue_service),
):
    try:
        return CourseService(db, admin, queue).regenerate_missing_modules(payload.course_id, payload.module_orders)
    except ServiceError as exc:
        raise exc.to_http() from exc


@router.post("/users/{user_id}/plan")
def update_user_plan(
    user_id: int,
    payload: PlanUpdate,
    db: Session = Depends(get_db),
    admin: User = Depends(get_current_superuser),
):
    """Manual plan change, for support cases outside the payment flow."""

    user = user_crud.get_user(db, user_id)
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Usuario no encontrado")
    return UserService(db, user).update_plan(payload.plan, changed_by=admin.id)


@router.get("/queue-stats")
def queue_stats(
    admin: User = Depends(get_current_superuser),
    queue: QueueService = Depends(get_queue_service),
):
    return queue.get_queue_stats()
