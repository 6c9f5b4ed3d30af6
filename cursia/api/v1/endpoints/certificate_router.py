from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from cursia.api.v1.dependencies import get_current_user, get_db
from cursia.core.errors import ServiceError
from cursia.models.user.user_model import User
from cursia.schemas.course_schema import CourseIdPayload
from cursia.services.certificate_service import CertificateService, verify_certificate

router = APIRouter()


@router.post("/generate")
def generate_certificate(
    payload: CourseIdPayload,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    try:
        return CertificateService(db, current_user).generate(payload.course_id)
    except ServiceError as exc:
        raise exc.to_http() from exc


@router.get("/{certificate_id}/verify")
def verify(certificate_id: str, db: Session = Depends(get_db)):
    """Public endpoint: anyone holding the link can check a certificate."""
    try:
        return verify_certificate(db, certificate_id)
    except ServiceError as exc:
        return JSONResponse(status_code=exc.status_code, content={"valid": False, "error": exc.code})
