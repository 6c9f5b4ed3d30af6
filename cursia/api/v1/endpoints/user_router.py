from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from cursia.api.v1.dependencies import get_current_user, get_db
from cursia.core.errors import ServiceError
from cursia.models.user.user_model import User
from cursia.schemas import user_schema
from cursia.services.certificate_service import CertificateService
from cursia.services.user_service import UserService

router = APIRouter()


@router.get("/me", response_model=user_schema.User)
def read_users_me(current_user: User = Depends(get_current_user)):
    return current_user


@router.get("/profile")
def get_profile(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return UserService(db, current_user).get_profile()


@router.put("/profile")
def update_profile(
    payload: user_schema.ProfileUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    try:
        return UserService(db, current_user).update_profile(name=payload.name, email=payload.email)
    except ServiceError as exc:
        raise exc.to_http() from exc


@router.get("/plan")
def get_plan(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return UserService(db, current_user).get_plan()


@router.get("/interests")
def get_interests(current_user: User = Depends(get_current_user)):
    return {"interests": list(current_user.interests or [])}


@router.post("/interests")
def update_interests(
    payload: user_schema.InterestsUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return UserService(db, current_user).update_interests(payload.interests)


@router.get("/certificates")
def list_certificates(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return {"certificates": CertificateService(db, current_user).list_for_user()}
