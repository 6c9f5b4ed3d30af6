import resend
from cursia.core.config import settings

resend.api_key = settings.RESEND_API_KEY


async def send_email(to: str, subject: str, html: str):
    # El SDK de Resend es síncrono; se llama directamente.
    return resend.Emails.send({
        "from": settings.EMAIL_FROM,
        "to": [to],
        "subject": subject,
        "html": html,
    })
