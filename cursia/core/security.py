import hashlib
import hmac
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Union

from jose import jwt
from passlib.context import CryptContext

from cursia.core.config import settings

# --- Configuración de seguridad ---
SECRET_KEY = settings.SECRET_KEY
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = settings.ACCESS_TOKEN_EXPIRE_MINUTES

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
logger = logging.getLogger(__name__)


def create_access_token(subject: Union[str, Any], expires_delta: timedelta = None) -> str:
    """Crea un token de acceso JWT."""
    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)

    to_encode = {"exp": expire, "sub": str(subject)}
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def verify_password(plain_password: str | None, hashed_password: str | None) -> bool:
    if not plain_password or not hashed_password:
        return False

    try:
        return pwd_context.verify(plain_password, hashed_password)
    except (ValueError, TypeError) as exc:
        logger.warning("Verificación de contraseña fallida: %s", exc)
        return False


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def compute_hmac_signature(payload: bytes, secret: str) -> str:
    """Hex HMAC-SHA256 of ``payload`` keyed with ``secret``."""

    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()


def verify_hmac_signature(payload: bytes, signature: str | None, secret: str | None) -> bool:
    if not signature or not secret:
        return False
    expected = compute_hmac_signature(payload, secret)
    return hmac.compare_digest(expected, signature.strip().lower())


def verify_bearer_secret(authorization: str | None, secret: str | None) -> bool:
    """Constant-time check of an ``Authorization: Bearer <secret>`` header."""

    if not authorization or not secret:
        return False
    scheme, _, value = authorization.strip().partition(" ")
    if scheme.lower() != "bearer":
        return False
    return hmac.compare_digest(value.strip().encode("utf-8"), secret.encode("utf-8"))
