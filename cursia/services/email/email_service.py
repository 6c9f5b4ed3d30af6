import logging

from cursia.core.config import settings
from cursia.models.user.user_model import User

from .resend_client import send_email
from .templates import render_welcome

logger = logging.getLogger(__name__)


async def send_welcome_email(user: User) -> bool:
    """Best effort: a delivery failure never blocks registration."""

    if not settings.RESEND_API_KEY:
        logger.info("RESEND_API_KEY no configurada; no se envía bienvenida a %s", user.email)
        return False

    subject, html = render_welcome(user.full_name or user.username, f"{str(settings.APP_BASE_URL).rstrip('/')}/dashboard")
    try:
        await send_email(user.email, subject, html)
    except Exception as exc:
        logger.warning("No se pudo enviar el correo de bienvenida a %s: %s", user.email, exc)
        return False
    logger.info("Correo de bienvenida enviado a %s", user.email)
    return True
