from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from cursia.api.v1.dependencies import get_current_user, get_db
from cursia.core.errors import ServiceError
from cursia.models.user.user_model import User
from cursia.schemas.community_schema import RateCourse
from cursia.schemas.course_schema import CourseIdPayload
from cursia.services.community_service import MAX_PAGE_SIZE, CommunityService

router = APIRouter()


@router.get("")
def list_community_courses(
    search: Optional[str] = None,
    level: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1),
    sort_by: str = Query("newest", alias="sortBy", pattern="^(newest|rating|completions|oldest)$"),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return CommunityService(db, current_user).list_public(
        search=search,
        level=level,
        page=page,
        limit=min(limit, MAX_PAGE_SIZE),
        sort_by=sort_by,
    )


@router.post("/publish")
def publish_course(
    payload: CourseIdPayload,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    try:
        return CommunityService(db, current_user).publish(payload.course_id)
    except ServiceError as exc:
        raise exc.to_http() from exc


@router.post("/unpublish")
def unpublish_course(
    payload: CourseIdPayload,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    try:
        return CommunityService(db, current_user).unpublish(payload.course_id)
    except ServiceError as exc:
        raise exc.to_http() from exc


@router.post("/rate")
def rate_course(
    payload: RateCourse,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    try:
        return CommunityService(db, current_user).rate(payload.course_id, payload.rating, payload.comment)
    except ServiceError as exc:
        raise exc.to_http() from exc


@router.post("/take-course")
def take_course(
    payload: CourseIdPayload,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    try:
        return CommunityService(db, current_user).take_course(payload.course_id)
    except ServiceError as exc:
        raise exc.to_http() from exc


@router.get("/{course_id}/ratings")
def list_course_ratings(
    course_id: int,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    try:
        return CommunityService(db, current_user).list_ratings(course_id, page=page, limit=min(limit, MAX_PAGE_SIZE))
    except ServiceError as exc:
        raise exc.to_http() from exc


@router.delete("/{course_id}")
def remove_from_community(
    course_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    try:
        return CommunityService(db, current_user).unpublish(course_id)
    except ServiceError as exc:
        raise exc.to_http() from exc
