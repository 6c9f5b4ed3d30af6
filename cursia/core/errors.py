"""Service-level error taxonomy shared by the services and the API layer."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from fastapi import HTTPException


@dataclass
class ServiceError(Exception):
    code: str
    status_code: int = 400
    details: dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:  # pragma: no cover - debugging helper
        return self.code

    def to_http(self) -> HTTPException:
        """Build the ``HTTPException`` routers raise for this error."""

        detail: Any = self.code
        if self.details:
            detail = {"error": self.code, **self.details}
        return HTTPException(status_code=self.status_code, detail=detail)


class UnauthorizedError(ServiceError):
    def __init__(self, code: str = "Unauthorized", **details: Any) -> None:
        super().__init__(code, 401, details)


class ForbiddenError(ServiceError):
    def __init__(self, code: str = "Forbidden", **details: Any) -> None:
        super().__init__(code, 403, details)


class NotFoundError(ServiceError):
    def __init__(self, code: str = "Not found", **details: Any) -> None:
        super().__init__(code, 404, details)


class ValidationError(ServiceError):
    def __init__(self, code: str, **details: Any) -> None:
        super().__init__(code, 400, details)


class ConflictError(ServiceError):
    def __init__(self, code: str, **details: Any) -> None:
        super().__init__(code, 409, details)


class InvalidSignature(ServiceError):
    """Webhook payload whose HMAC does not match the shared secret.

    Reported to the provider as a processing failure; no state is touched.
    """

    def __init__(self) -> None:
        super().__init__("Webhook processing failed", 500)


class ExternalServiceError(ServiceError):
    def __init__(self, code: str, **details: Any) -> None:
        super().__init__(code, 500, details)


class RateLimitError(ServiceError):
    def __init__(self, code: str, **details: Any) -> None:
        super().__init__(code, 429, details)


class GenerationError(Exception):
    """Raised by the content generator when a course or module cannot be built."""

