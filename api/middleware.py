"""
Global middleware and exception handlers.
"""

from __future__ import annotations

import logging
import time

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from core.rate_limiter import rate_limit_headers
from utils.errors import IntegrationError, RateLimitExceededError

logger = logging.getLogger(__name__)


def register_middleware(app: FastAPI) -> None:
    """Attach any app-level middleware."""

    @app.middleware("http")
    async def request_timer(request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        elapsed = time.perf_counter() - start
        response.headers["X-Process-Time"] = f"{elapsed:.4f}"
        logger.debug("%s %s — %.3fs", request.method, request.url.path, elapsed)
        return response


def register_exception_handlers(app: FastAPI) -> None:
    """Translate the integration error taxonomy into JSON responses."""

    @app.exception_handler(IntegrationError)
    async def integration_error_handler(request: Request, exc: IntegrationError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error("%s on %s: %s", type(exc).__name__, request.url.path, exc.message)
        else:
            logger.info("%s on %s: %s", type(exc).__name__, request.url.path, exc.message)
        headers = {}
        if isinstance(exc, RateLimitExceededError) and exc.result is not None:
            headers = rate_limit_headers(exc.result)
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)
