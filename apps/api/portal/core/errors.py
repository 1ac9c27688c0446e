"""Error types and handlers for plugin-facing endpoints.

Plugin endpoints answer with a flat ``{"error": ...}`` body (the shape the
WordPress plugin parses), unlike the session API which uses FastAPI's
``{"detail": ...}``.
"""

import logging

from fastapi import Request
from fastapi.responses import JSONResponse

from portal.core.structured_logging import build_log_context

logger = logging.getLogger(__name__)


class PluginAPIError(Exception):
    """Raised by plugin endpoints; rendered as ``{"error": message, **extra}``."""

    def __init__(self, status_code: int, error: str, **extra):
        super().__init__(error)
        self.status_code = status_code
        self.error = error
        self.extra = extra

    def to_body(self) -> dict:
        return {"error": self.error, **self.extra}


async def plugin_api_error_handler(request: Request, exc: PluginAPIError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_body())


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Log unexpected failures with request context; never leak internals."""
    logger.exception(
        "Unhandled error on %s %s",
        request.method,
        request.url.path,
        extra=build_log_context(route=request.url.path, method=request.method),
    )
    return JSONResponse(status_code=500, content={"error": "Internal server error"})
