import logging
import time
from datetime import datetime, timezone

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from sqlalchemy import text

from cursia.core.config import settings
from cursia.db import session as db_session
from cursia.db.retry import with_db_retry

router = APIRouter()
logger = logging.getLogger(__name__)


def _configured(value) -> str:
    return "configured" if value else "not_configured"


def _ping_database() -> None:
    with db_session.sync_engine.connect() as connection:
        connection.execute(text("SELECT 1"))


@router.get("")
def health_check():
    started = time.perf_counter()
    timestamp = datetime.now(timezone.utc).isoformat()
    try:
        with_db_retry(_ping_database)
    except Exception as exc:
        logger.error("Health check: base de datos no disponible: %s", exc)
        return JSONResponse(
            status_code=503,
            content={
                "status": "unhealthy",
                "database": "error",
                "timestamp": timestamp,
                "responseTime": round((time.perf_counter() - started) * 1000),
                "environment": settings.ENVIRONMENT,
            },
        )

    return {
        "status": "healthy",
        "database": "connected",
        "timestamp": timestamp,
        "responseTime": round((time.perf_counter() - started) * 1000),
        "services": {
            "anthropic": _configured(settings.ANTHROPIC_API_KEY),
            "youtube": _configured(settings.YOUTUBE_DATA_API_KEY),
            "wompi": _configured(settings.WOMPI_PRIVATE_KEY),
            "redis": _configured(settings.REDIS_HOST),
        },
        "environment": settings.ENVIRONMENT,
    }
