"""Global error handlers for the application."""
import logging

from fastapi import Request
from fastapi.responses import JSONResponse

from app.utils.errors import AuthError

logger = logging.getLogger(__name__)


async def auth_error_handler(request: Request, exc: AuthError):
    if exc.status_code >= 500:
        logger.error(f"{exc.code} on {request.method} {request.url.path}: {exc.detail}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=exc.headers)


async def http_exception_handler(request: Request, exc):
    if isinstance(exc, AuthError):
        return await auth_error_handler(request, exc)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail}, headers=getattr(exc, "headers", None))
