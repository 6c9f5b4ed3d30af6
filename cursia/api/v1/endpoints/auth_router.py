import logging

from fastapi import APIRouter, Depends, HTTPException, Response, status
from fastapi.responses import JSONResponse
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy.orm import Session

from cursia.api.v1.dependencies import get_db
from cursia.core import security
from cursia.core.config import settings
from cursia.crud import user_crud
from cursia.schemas import user_schema
from cursia.services.email.email_service import send_welcome_email

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/register", status_code=status.HTTP_201_CREATED)
async def register(user_in: user_schema.UserCreate, db: Session = Depends(get_db)):
    if user_crud.get_user_by_email(db, email=user_in.email):
        raise HTTPException(status_code=400, detail="El email ya está registrado")
    if user_crud.get_user_by_username(db, username=user_in.username):
        raise HTTPException(status_code=400, detail="El nombre de usuario ya está en uso")

    user = user_crud.create_user(db=db, user=user_in)
    logger.info("Usuario %s registrado", user.id)

    # El envío es best effort; no bloquea el registro.
    await send_welcome_email(user)

    return {"success": True, "user": user_schema.User.model_validate(user).model_dump(by_alias=True, mode="json")}


@router.post("/login")
def login_for_access_token(
    response: Response,
    db: Session = Depends(get_db),
    form_data: OAuth2PasswordRequestForm = Depends(),
):
    identifier = form_data.username.strip()
    user = user_crud.get_user_by_username(db, username=identifier)
    if user is None and "@" in identifier:
        user = user_crud.get_user_by_email(db, email=identifier)
    if not user or not security.verify_password(form_data.password, user.hashed_password):
        raise HTTPException(status_code=401, detail="Incorrect username or password")
    if not user.is_active:
        raise HTTPException(status_code=403, detail="inactive_user")

    access_token = security.create_access_token(subject=str(user.id))

    response.set_cookie(
        key="access_token",
        value=access_token,
        httponly=True,
        samesite="none",
        secure=settings.ENVIRONMENT == "production",
        path="/",
    )
    return {"access_token": access_token, "token_type": "bearer"}


@router.post("/logout")
def logout() -> JSONResponse:
    response = JSONResponse({"message": "Logout successful"})
    response.delete_cookie(
        key="access_token",
        path="/",
        samesite="none",
        secure=settings.ENVIRONMENT == "production",
    )
    return response
