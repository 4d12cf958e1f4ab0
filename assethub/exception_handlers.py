from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from sqlalchemy.exc import IntegrityError
from starlette.exceptions import HTTPException as StarletteHTTPException
import structlog

from .config import settings
from .errors import AppError
from .schemas.common import error_response


logger = structlog.get_logger(__name__)


def _validation_errors(exc: RequestValidationError) -> list:
    errors = []
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path")]
        errors.append({"field": ".".join(loc) or None, "message": err.get("msg")})
    return errors


def setup_exception_handlers(app: FastAPI) -> None:

    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError):
        if exc.status_code >= 500:
            logger.error("app_error", path=request.url.path, error=exc.message)
            message = "Internal server error" if settings.is_production else exc.message
        else:
            logger.info("request_rejected", path=request.url.path, status_code=exc.status_code, error=exc.message)
            message = exc.message
        return JSONResponse(status_code=exc.status_code, content=error_response(message, exc.errors))

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(status_code=400, content=error_response("Validation failed", _validation_errors(exc)))

    @app.exception_handler(IntegrityError)
    async def integrity_error_handler(request: Request, exc: IntegrityError):
        logger.warning("integrity_error", path=request.url.path, error=str(exc.orig))
        return JSONResponse(status_code=409, content=error_response("Duplicate or conflicting record"))

    @app.exception_handler(RateLimitExceeded)
    def rate_limit_handler(request: Request, exc: RateLimitExceeded):
        return JSONResponse(status_code=429, content=error_response(f"Rate limit exceeded: {exc.detail}"))

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        message = str(exc.detail)
        if exc.status_code == 404 and message == "Not Found":
            message = f"Route {request.url.path} not found"
        return JSONResponse(status_code=exc.status_code, content=error_response(message), headers=getattr(exc, "headers", None))

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.exception("unhandled_exception", path=request.url.path)
        message = "Internal server error" if settings.is_production else str(exc)
        return JSONResponse(status_code=500, content=error_response(message))
