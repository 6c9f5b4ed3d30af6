from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from cursia.api.v1.dependencies import get_current_user, get_db, get_queue_service
from cursia.core.errors import ServiceError
from cursia.models.user.user_model import User
from cursia.schemas.course_schema import CourseCreate
from cursia.services.course_service import CourseService
from cursia.services.course_status_service import CourseStatusService
from cursia.services.progress_service import ProgressService
from cursia.services.queue_service import QueueService

router = APIRouter()


@router.get("")
def list_courses(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return CourseService(db, current_user).list_courses()


@router.post("", status_code=status.HTTP_201_CREATED)
def create_course(
    payload: CourseCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    queue: QueueService = Depends(get_queue_service),
):
    try:
        return CourseService(db, current_user, queue).create_course(payload)
    except ServiceError as exc:
        raise exc.to_http() from exc


@router.get("/trash")
def list_trash(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return CourseService(db, current_user).list_trash()


@router.get("/{course_id}")
def get_course(
    course_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    try:
        return CourseService(db, current_user).get_course(course_id)
    except ServiceError as exc:
        raise exc.to_http() from exc


@router.get("/{course_id}/status")
def get_course_status(
    course_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    try:
        return CourseStatusService(db, current_user).get_status(course_id)
    except ServiceError as exc:
        raise exc.to_http() from exc


@router.get("/{course_id}/generation-status")
def get_generation_status(
    course_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    queue: QueueService = Depends(get_queue_service),
):
    try:
        return CourseStatusService(db, current_user, queue).get_generation_status(course_id)
    except ServiceError as exc:
        raise exc.to_http() from exc


@router.post("/{course_id}/start")
def start_course(
    course_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    queue: QueueService = Depends(get_queue_service),
):
    try:
        result = CourseService(db, current_user, queue).start_course(course_id)
    except ServiceError as exc:
        raise exc.to_http() from exc

    if result.get("status") == "generating":
        return JSONResponse(status_code=status.HTTP_202_ACCEPTED, content=result)
    return result


@router.post("/{course_id}/generate-remaining")
def generate_remaining(
    course_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    queue: QueueService = Depends(get_queue_service),
):
    try:
        return CourseService(db, current_user, queue).generate_remaining(course_id)
    except ServiceError as exc:
        raise exc.to_http() from exc


@router.post("/{course_id}/cancel")
def cancel_generation(
    course_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    try:
        return CourseService(db, current_user).cancel_generation(course_id)
    except ServiceError as exc:
        raise exc.to_http() from exc


@router.post("/{course_id}/finalize")
def finalize_course(
    course_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    try:
        return ProgressService(db, current_user).finalize_course(course_id)
    except ServiceError as exc:
        raise exc.to_http() from exc


@router.delete("/{course_id}")
@router.post("/{course_id}/delete")
def delete_course(
    course_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    try:
        return CourseService(db, current_user).soft_delete(course_id)
    except ServiceError as exc:
        raise exc.to_http() from exc


@router.post("/{course_id}/restore")
def restore_course(
    course_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    try:
        return CourseService(db, current_user).restore(course_id)
    except ServiceError as exc:
        raise exc.to_http() from exc


@router.delete("/{course_id}/permanent-delete")
@router.post("/{course_id}/permanent-delete")
def permanent_delete_course(
    course_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    try:
        return CourseService(db, current_user).permanent_delete(course_id)
    except ServiceError as exc:
        raise exc.to_http() from exc
