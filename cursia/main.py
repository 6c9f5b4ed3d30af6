import logging
import os
import re

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.sessions import SessionMiddleware

from cursia.core.config import settings
from cursia.db.base import Base
from cursia.api.v1.api import api_router

from cursia.core.security import verify_password
from cursia.models.user.user_model import User
from cursia.db import session as db_session

from sqladmin import Admin
from sqladmin.authentication import AuthenticationBackend
from cursia.admin import ADMIN_VIEWS

# --- Logging ---
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Cursia API",
    openapi_url="/api/openapi.json",
)


def _sanitize_origin(origin: str | None) -> str | None:
    if not origin:
        return None
    value = origin.strip()
    if not value:
        return None
    if not value.startswith("http"):
        value = f"https://{value}"
    return value.rstrip("/")


def _compile_origin_regex(patterns: set[str]) -> re.Pattern[str] | None:
    valid_patterns: list[str] = []
    for pattern in sorted(patterns):
        candidate = pattern.strip()
        if not candidate:
            continue

        try:
            re.compile(candidate)
        except re.error as exc:
            logger.warning("Regex CORS ignorada (inválida): %s (%s)", candidate, exc)
            continue

        valid_patterns.append(candidate)

    if not valid_patterns:
        return None

    if len(valid_patterns) == 1:
        return re.compile(valid_patterns[0])

    return re.compile("|".join(f"(?:{pattern})" for pattern in valid_patterns))


def _build_cors_config() -> tuple[list[str], re.Pattern[str] | None]:
    base_origins = {_sanitize_origin(o) for o in settings.BACKEND_CORS_ORIGINS}
    base_origins.add(_sanitize_origin(str(settings.APP_BASE_URL)))
    base_origins.add(_sanitize_origin(os.getenv("VERCEL_URL")))

    additional = os.getenv("ADDITIONAL_CORS_ORIGINS")
    if additional:
        for origin in additional.split(","):
            base_origins.add(_sanitize_origin(origin))

    allow_origins = sorted({origin for origin in base_origins if origin})

    regex_candidates: set[str] = set()
    additional_regexes = os.getenv("ADDITIONAL_CORS_ORIGIN_REGEXES")
    if additional_regexes:
        regex_candidates.update(p.strip() for p in additional_regexes.split(",") if p.strip())

    if any("vercel.app" in origin for origin in allow_origins):
        regex_candidates.add(r"^https://.*\.vercel\.app$")

    allow_origin_regex = _compile_origin_regex(regex_candidates)

    logger.info("Orígenes CORS configurados: %s", allow_origins)
    if allow_origin_regex is not None:
        logger.info("Regex CORS configuradas: %s", allow_origin_regex.pattern)

    return allow_origins, allow_origin_regex


# --- Middlewares ---
app.add_middleware(SessionMiddleware, secret_key=settings.SECRET_KEY)

cors_origins, cors_regex = _build_cors_config()
cors_kwargs: dict[str, object] = {
    "allow_origins": cors_origins,
    "allow_credentials": True,
    "allow_methods": ["*"],
    "allow_headers": ["Authorization", "Content-Type", "X-Access-Token"],
}
if cors_regex is not None:
    cors_kwargs["allow_origin_regex"] = cors_regex

app.add_middleware(CORSMiddleware, **cors_kwargs)


# --- Manejo de errores ---
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    field_errors: dict[str, list[str]] = {}
    for error in exc.errors():
        location = [str(part) for part in error.get("loc", ()) if part not in ("body", "query", "path")]
        field_errors.setdefault(".".join(location) or "body", []).append(error.get("msg", "Invalid value"))
    return JSONResponse(
        status_code=400,
        content=jsonable_encoder({"error": "Invalid input", "fieldErrors": field_errors}),
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("Error no controlado en %s %s: %s", request.method, request.url.path, exc, exc_info=exc)
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


# --- Back-office ---
class AdminAuth(AuthenticationBackend):
    async def login(self, request: Request) -> bool:
        form = await request.form()
        username = form.get("username")
        password = form.get("password")

        with db_session.SessionLocal() as db:
            user = db.query(User).filter(User.username == username).first()

        if user and user.is_superuser and verify_password(password, user.hashed_password):
            request.session.update({"token": "admin_logged_in", "user": user.username})
            return True
        return False

    async def logout(self, request: Request) -> bool:
        request.session.clear()
        return True

    async def authenticate(self, request: Request) -> bool:
        return "token" in request.session


authentication_backend = AdminAuth(secret_key=settings.SECRET_KEY)
admin = Admin(
    app,
    db_session.async_engine,
    authentication_backend=authentication_backend,
    base_url="/admin",
    title="Cursia Admin",
)
for view in ADMIN_VIEWS:
    admin.add_view(view)

app.include_router(api_router, prefix="/api")


@app.on_event("startup")
async def startup():
    logger.info("Verificando y creando las tablas de la base de datos...")
    async with db_session.async_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Tablas de la base de datos listas.")


@app.get("/")
def read_root():
    return {"message": "Welcome to Cursia API!"}
