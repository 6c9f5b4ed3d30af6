import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from cursia.api.v1.dependencies import get_db
from cursia.services.subscription_service import SubscriptionReconciler

router = APIRouter()
logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "x-wompi-signature"


@router.post("/wompi")
async def wompi_webhook(request: Request, db: Session = Depends(get_db)):
    """Escucha los eventos de Wompi y actualiza suscripciones y planes."""
    payload = await request.body()
    signature = request.headers.get(SIGNATURE_HEADER)

    try:
        return SubscriptionReconciler(db).handle_webhook(payload, signature)
    except Exception as exc:
        # Wompi reintenta ante cualquier respuesta distinta de 2xx.
        logger.error("Error procesando webhook de Wompi: %s", exc, exc_info=True)
        return JSONResponse(status_code=500, content={"error": "Webhook processing failed"})
