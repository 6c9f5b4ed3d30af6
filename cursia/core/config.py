from pydantic_settings import BaseSettings
from typing import Optional, List
from pydantic import AliasChoices, AnyHttpUrl, Field, ValidationError, field_validator
import sys


WOMPI_SANDBOX_URL = "https://sandbox.wompi.co/v1"
WOMPI_PRODUCTION_URL = "https://production.wompi.co/v1"


class Settings(BaseSettings):
    DATABASE_URL: str
    BACKEND_CORS_ORIGINS: List[str] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]

    # Clave para firmar los JWT (compatible con NEXTAUTH_SECRET).
    SECRET_KEY: str = Field(validation_alias=AliasChoices("SECRET_KEY", "NEXTAUTH_SECRET"))
    APP_BASE_URL: AnyHttpUrl = Field(
        default="http://localhost:3000",
        validation_alias=AliasChoices("APP_BASE_URL", "NEXTAUTH_URL"),
    )
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 24 * 7

    ENVIRONMENT: str = "development"

    # --- Cron ---
    CRON_SECRET: Optional[str] = None

    # --- Wompi ---
    WOMPI_PUBLIC_KEY: Optional[str] = None
    WOMPI_PRIVATE_KEY: Optional[str] = None
    WOMPI_EVENTS_SECRET: Optional[str] = None
    WOMPI_BASE_URL: str = WOMPI_SANDBOX_URL

    # --- Redis / Celery ---
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_PASSWORD: Optional[str] = None

    # --- Generación de contenido ---
    ANTHROPIC_API_KEY: Optional[str] = None
    ANTHROPIC_MODEL: str = "claude-3-haiku-20240307"
    ANTHROPIC_MAX_TOKENS: int = 4096
    YOUTUBE_DATA_API_KEY: Optional[str] = None

    # --- Email ---
    RESEND_API_KEY: Optional[str] = None
    EMAIL_FROM: str = "Cursia <noreply@cursia.app>"

    # Instrumentación de rendimiento
    SQLALCHEMY_SLOW_QUERY_THRESHOLD_MS: int = 300

    # Reintentos de base de datos
    DB_RETRY_ATTEMPTS: int = 3
    DB_RETRY_BASE_DELAY_SECONDS: float = 2.0

    # Ritmo máximo de creación de cursos por usuario
    GENERATION_RATE_LIMIT_MAX: int = 3
    GENERATION_RATE_LIMIT_WINDOW_SECONDS: int = 60

    class Config:
        env_file = ".env"
        populate_by_name = True
        extra = "ignore"

    @field_validator("DATABASE_URL", mode="before")
    @classmethod
    def _normalize_database_url(cls, value: str) -> str:
        """Ensure Postgres URLs always use the asyncpg driver.

        Managed Postgres providers still expose database URLs using the legacy
        ``postgres://`` scheme, which SQLAlchemy no longer understands. Those
        URLs (and the ``postgresql://`` / psycopg variants) are upgraded to
        ``postgresql+asyncpg://`` while SQLite URLs are left untouched.
        """

        if not isinstance(value, str):
            return value

        if "+asyncpg" in value:
            return value

        replacements = {
            "postgres://": "postgresql+asyncpg://",
            "postgresql://": "postgresql+asyncpg://",
            "postgresql+psycopg2://": "postgresql+asyncpg://",
            "postgresql+psycopg://": "postgresql+asyncpg://",
        }

        for prefix, target in replacements.items():
            if value.startswith(prefix):
                return target + value[len(prefix) :]

        return value

    @field_validator("WOMPI_BASE_URL", mode="before")
    @classmethod
    def _strip_wompi_url(cls, value: str) -> str:
        if isinstance(value, str):
            return value.rstrip("/") or WOMPI_SANDBOX_URL
        return value

    @property
    def redis_url(self) -> str:
        auth = f":{self.REDIS_PASSWORD}@" if self.REDIS_PASSWORD else ""
        return f"redis://{auth}{self.REDIS_HOST}:{self.REDIS_PORT}/0"


def _log_settings_validation_error(exc: ValidationError) -> None:
    """Pretty-print missing or invalid environment variables.

    The exception bubbles up during module import, which makes the faulty
    variable hard to spot in server logs, so the structured payload is
    printed before re-raising.
    """

    print("Error de configuración al cargar las variables de entorno:", file=sys.stderr)

    details = exc.errors()
    if details:
        for error in details:
            location = ".".join(str(part) for part in error.get("loc", ()))
            message = error.get("msg", "Unknown validation error")
            type_name = error.get("type")
            hint = f"{message} (type={type_name})" if type_name else message
            print(f"  - {location}: {hint}", file=sys.stderr)
    else:
        print(exc, file=sys.stderr)


try:
    settings = Settings()
except ValidationError as exc:  # pragma: no cover - exercised at runtime
    _log_settings_validation_error(exc)
    raise
