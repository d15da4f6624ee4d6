"""Service error taxonomy and the JSON error envelope."""

import logging
from typing import Any, Optional

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class ServiceError(HTTPException):
    """Base error raised by services; rendered as the standard error envelope."""

    def __init__(
        self,
        status_code: int,
        message: str,
        error_code: str,
        data: Optional[dict[str, Any]] = None,
        debug_detail: Optional[str] = None,
        headers: Optional[dict[str, str]] = None,
    ):
        super().__init__(status_code=status_code, detail=message, headers=headers)
        self.error_code = error_code
        self.data = data
        self.debug_detail = debug_detail

    @property
    def message(self) -> str:
        return self.detail


class ValidationError(ServiceError):
    """Missing or malformed input. Never retried."""

    def __init__(self, message: str, error_code: str = "VALIDATION_ERROR", **kwargs):
        super().__init__(status.HTTP_400_BAD_REQUEST, message, error_code, **kwargs)


class NotFoundError(ServiceError):
    """Absent, or outside the caller's tenant (reported identically)."""

    def __init__(self, message: str, error_code: str = "NOT_FOUND", **kwargs):
        super().__init__(status.HTTP_404_NOT_FOUND, message, error_code, **kwargs)


class AuthError(ServiceError):
    """Authentication (401) or authorization (403) failure."""

    def __init__(
        self,
        message: str,
        error_code: str,
        status_code: int = status.HTTP_401_UNAUTHORIZED,
        **kwargs,
    ):
        super().__init__(status_code, message, error_code, **kwargs)


class ConflictError(ServiceError):
    """Duplicate resource or a forbidden state transition."""

    def __init__(
        self,
        message: str,
        error_code: str,
        status_code: int = status.HTTP_409_CONFLICT,
        **kwargs,
    ):
        super().__init__(status_code, message, error_code, **kwargs)


class DependencyError(ServiceError):
    """Identity provider, storage or database failure."""

    def __init__(
        self,
        message: str,
        error_code: str = "DEPENDENCY_ERROR",
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        **kwargs,
    ):
        super().__init__(status_code, message, error_code, **kwargs)


def error_body(message: str, error_code: str, **extra) -> dict:
    """Build the error envelope."""
    body = {"success": False, "message": message, "error": error_code}
    body.update({k: v for k, v in extra.items() if v is not None})
    return body


def register_exception_handlers(app: FastAPI, debug: bool = False) -> None:
    """Install handlers that render every failure as the error envelope."""

    @app.exception_handler(ServiceError)
    async def service_error_handler(request: Request, exc: ServiceError):
        if exc.status_code >= 500:
            logger.error(f"{exc.error_code}: {exc.detail} ({exc.debug_detail})")
        return JSONResponse(
            status_code=exc.status_code,
            content=error_body(
                exc.detail,
                exc.error_code,
                data=exc.data,
                detail=exc.debug_detail if debug else None,
            ),
            headers=exc.headers,
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content=error_body(str(exc.detail), f"HTTP_{exc.status_code}"),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        errors = [
            {"field": ".".join(str(p) for p in err["loc"][1:]), "message": err["msg"]}
            for err in exc.errors()
        ]
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=error_body("Validation failed", "VALIDATION_ERROR", data={"errors": errors}),
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Handle uncaught exceptions."""
        logger.exception(f"Unhandled exception: {exc}")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=error_body(
                "An unexpected error occurred",
                "INTERNAL_ERROR",
                detail=str(exc) if debug else None,
            ),
        )
