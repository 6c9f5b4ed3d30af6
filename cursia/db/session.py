"""Database session and engine utilities.

Both the asynchronous engine (used for schema creation and the admin) and
the synchronous engine (used by the API routers and the Celery worker) are
built here. A SQLite fallback keeps local development working when the
configured PostgreSQL instance is unreachable.
"""

from __future__ import annotations

import logging
import os
import ssl
from time import perf_counter
from typing import Any

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.engine.url import URL, make_url
from sqlalchemy.exc import ArgumentError, OperationalError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.orm import sessionmaker

from cursia.core.config import settings
from cursia.db.retry import with_db_retry

logger = logging.getLogger(__name__)


def _create_ssl_context(mode: str, root_cert: str | None) -> ssl.SSLContext:
    """Create an :class:`ssl.SSLContext` matching libpq ``sslmode`` semantics."""

    context = ssl.create_default_context(ssl.Purpose.SERVER_AUTH)
    if root_cert:
        context.load_verify_locations(cafile=root_cert)

    if mode in {"verify-ca", "verify-full"}:
        context.check_hostname = mode == "verify-full"
    else:
        # require/prefer/allow only ensure encryption.
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE

    return context


def _prepare_asyncpg_connection(url: str) -> tuple[str, dict[str, object]]:
    """Strip query params asyncpg does not understand (``sslmode``...)."""

    try:
        parsed_url = make_url(url)
    except ArgumentError:
        return url, {}

    if not parsed_url.drivername.startswith("postgresql+asyncpg"):
        return url, {}

    query = dict(parsed_url.query)
    sslmode = query.pop("sslmode", None)
    sslrootcert = query.pop("sslrootcert", None)

    connect_args: dict[str, object] = {}
    if isinstance(sslmode, str):
        mode = sslmode.lower()
        if mode == "disable":
            connect_args["ssl"] = False
        elif mode in {"allow", "prefer", "require", "verify-ca", "verify-full"}:
            connect_args["ssl"] = _create_ssl_context(mode, sslrootcert)

    sanitized_url = parsed_url.set(query=query).render_as_string(hide_password=False)
    return sanitized_url, connect_args


def _derive_sync_connection_parameters(async_url: str) -> tuple[str, dict[str, Any]]:
    """Return a synchronous SQLAlchemy URL matching the async configuration."""

    try:
        parsed_url: URL = make_url(async_url)
    except ArgumentError:
        return async_url.replace("+asyncpg", "+psycopg"), {}

    drivername = parsed_url.drivername
    connect_args: dict[str, Any] = {}

    if drivername.startswith("postgresql+"):
        parsed_url = parsed_url.set(drivername="postgresql+psycopg")
    elif drivername == "sqlite+aiosqlite":
        parsed_url = parsed_url.set(drivername="sqlite")
        connect_args["check_same_thread"] = False

    return parsed_url.render_as_string(hide_password=False), connect_args


def _should_enable_sqlite_fallback() -> bool:
    if os.getenv("DISABLE_SQLITE_FALLBACK") == "1":
        return False
    return (settings.ENVIRONMENT or "").lower() in {"development", "local"}


SQLITE_FALLBACK_URL = "sqlite+aiosqlite:///./cursia_local.db"

# These globals are populated by ``configure_database``.
async_engine: AsyncEngine
sync_engine: Engine
SessionLocal: sessionmaker


def _install_slow_query_logger(engine: Engine) -> None:
    """Warn when a statement exceeds ``SQLALCHEMY_SLOW_QUERY_THRESHOLD_MS``."""

    threshold_ms = max(settings.SQLALCHEMY_SLOW_QUERY_THRESHOLD_MS or 0, 0)
    if threshold_ms == 0:
        return

    marker = "_cursia_slow_query_hook"
    if getattr(engine, marker, False):
        return
    setattr(engine, marker, True)

    def _before_cursor_execute(conn, cursor, statement, parameters, context, executemany):
        context._cursia_query_start = perf_counter()

    def _after_cursor_execute(conn, cursor, statement, parameters, context, executemany):
        start = getattr(context, "_cursia_query_start", None)
        if start is None:
            return

        elapsed_ms = (perf_counter() - start) * 1000.0
        if elapsed_ms < threshold_ms:
            return

        snippet = " ".join(statement.split()) if isinstance(statement, str) else str(statement)
        if len(snippet) > 200:
            snippet = snippet[:197] + "..."

        logger.warning("SQL lento (%.1f ms) - %s", elapsed_ms, snippet)

    event.listen(engine, "before_cursor_execute", _before_cursor_execute)
    event.listen(engine, "after_cursor_execute", _after_cursor_execute)


def _verify_database_connection(engine: Engine) -> None:
    """Ping ``engine``; remote databases get the bounded retry policy."""

    def _ping() -> None:
        with engine.connect() as connection:
            connection.execute(text("SELECT 1"))

    if engine.dialect.name == "sqlite":
        _ping()
        return

    with_db_retry(_ping)


def configure_database(database_url: str | None = None, *, allow_fallback: bool = True) -> None:
    """Initialise the engines and the session factory.

    ``database_url`` defaults to ``settings.DATABASE_URL``. When the
    connection fails in development the configuration switches to a local
    SQLite file so the API can still boot.
    """

    global async_engine, sync_engine, SessionLocal

    target_url = str(database_url or settings.DATABASE_URL)
    async_url, async_connect_args = _prepare_asyncpg_connection(target_url)

    logger.info("Configuración de la base de datos: %s", make_url(async_url).render_as_string(hide_password=True))

    candidate_async_engine = create_async_engine(
        async_url,
        echo=False,
        future=True,
        connect_args=async_connect_args,
    )

    sync_url, sync_connect_args = _derive_sync_connection_parameters(async_url)
    candidate_sync_engine = create_engine(
        sync_url,
        pool_pre_ping=True,
        connect_args=sync_connect_args,
    )

    _install_slow_query_logger(candidate_sync_engine)

    try:
        _verify_database_connection(candidate_sync_engine)
    except (OperationalError, OSError) as exc:
        if allow_fallback and _should_enable_sqlite_fallback():
            logger.warning(
                "No se pudo conectar a la base de datos (%s). Usando SQLite local.",
                exc,
            )
            candidate_sync_engine.dispose()
            candidate_async_engine.sync_engine.dispose()
            configure_database(SQLITE_FALLBACK_URL, allow_fallback=False)
            return

        logger.error("Conexión a la base de datos fallida: %s", exc)
        raise

    async_engine = candidate_async_engine
    sync_engine = candidate_sync_engine
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=sync_engine)


configure_database()
