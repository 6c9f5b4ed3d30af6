"""Bounded retry for transient database connectivity failures."""

from __future__ import annotations

import logging
import time
from typing import Callable, TypeVar

from sqlalchemy.exc import DBAPIError, OperationalError

from cursia.core.config import settings

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _is_transient(exc: Exception) -> bool:
    if isinstance(exc, OperationalError):
        return True
    if isinstance(exc, DBAPIError):
        return bool(exc.connection_invalidated)
    return isinstance(exc, (ConnectionError, TimeoutError))


def with_db_retry(
    operation: Callable[[], T],
    *,
    attempts: int | None = None,
    base_delay: float | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Run ``operation`` retrying connectivity errors with exponential backoff.

    Delays grow as ``base_delay * 2 ** (attempt - 1)`` (2s, 4s with the
    defaults). Non-transient errors and the last failure are re-raised.
    """

    max_attempts = max(int(attempts or settings.DB_RETRY_ATTEMPTS), 1)
    delay_base = settings.DB_RETRY_BASE_DELAY_SECONDS if base_delay is None else base_delay

    attempt = 1
    while True:
        try:
            return operation()
        except (DBAPIError, ConnectionError, TimeoutError) as exc:
            if not _is_transient(exc) or attempt >= max_attempts:
                raise

            delay = max(delay_base, 0.0) * (2 ** (attempt - 1))
            logger.warning(
                "Error de conexión a la base de datos (intento %s/%s): %s. Reintentando en %.1f s.",
                attempt,
                max_attempts,
                exc,
                delay,
            )
            sleep(delay)
            attempt += 1
