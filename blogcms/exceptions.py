"""
Domain error taxonomy and its HTTP mapping.

Services raise these; ``register_exception_handlers`` turns each one into a
JSON response with a distinct status code and machine-readable ``code``.
"""
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class DomainError(Exception):
    status_code = 500
    code = "error"

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail

    def to_dict(self) -> dict:
        return {"detail": self.detail, "code": self.code}


class ValidationError(DomainError):
    """Caller-correctable field errors; ``errors`` maps field name to message."""

    status_code = 422
    code = "validation_error"

    def __init__(self, errors: dict[str, str], detail: str = "Validation failed") -> None:
        super().__init__(detail)
        self.errors = errors

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["errors"] = self.errors
        return data


class NotFound(DomainError):
    status_code = 404
    code = "not_found"


class Forbidden(DomainError):
    status_code = 403
    code = "forbidden"


class Unauthorized(DomainError):
    status_code = 401
    code = "unauthorized"


class InvalidQuery(DomainError):
    status_code = 400
    code = "invalid_query"


class Conflict(DomainError):
    status_code = 409
    code = "conflict"


async def _handle_domain_error(request: Request, exc: DomainError) -> JSONResponse:
    logger.info(
        "%s %s rejected: %s (%s)", request.method, request.url.path, exc.code, exc.detail
    )
    headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, Unauthorized) else None
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


def register_exception_handlers(app: FastAPI) -> None:
    """Register the handler for every DomainError subclass on *app*."""
    app.add_exception_handler(DomainError, _handle_domain_error)
