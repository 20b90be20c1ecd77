"""Request middleware for tracking, CORS, and other cross-cutting concerns."""

import logging
import time
import uuid
from typing import Callable
from fastapi import Request, Response
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware

from chathub.infra.config import config
from chathub.infra.metrics import request_count, request_duration

logger = logging.getLogger("chathub.request")


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Attach a request ID to every request and response."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id

        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response


def _route_template(request: Request) -> str:
    # Route template, e.g. /messages/{message_id}
    route = request.scope.get("route")
    return getattr(route, "path", request.url.path)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log request/response details and record request metrics."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = getattr(request.state, "request_id", "unknown")

        start_time = time.time()
        logger.info(
            "Request started",
            extra={
                "request_id": request_id,
                "method": request.method,
                "path": request.url.path,
                "client": request.client.host if request.client else None,
            }
        )

        try:
            response = await call_next(request)
        except Exception as e:
            duration = time.time() - start_time
            logger.error(
                "Request failed",
                extra={
                    "request_id": request_id,
                    "method": request.method,
                    "path": request.url.path,
                    "error": str(e),
                    "duration_ms": int(duration * 1000),
                },
                exc_info=True,
            )
            request_count.labels(request.method, _route_template(request), "500").inc()
            raise

        duration = time.time() - start_time
        endpoint = _route_template(request)
        request_count.labels(request.method, endpoint, str(response.status_code)).inc()
        request_duration.labels(request.method, endpoint).observe(duration)

        duration_ms = int(duration * 1000)
        logger.info(
            "Request completed",
            extra={
                "request_id": request_id,
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "duration_ms": duration_ms,
            }
        )
        response.headers["X-Response-Time-Ms"] = str(duration_ms)
        return response


def setup_cors(app):
    """Setup CORS middleware."""
    if config.CORS_ORIGINS:
        allowed_origins = [origin.strip() for origin in config.CORS_ORIGINS.split(",") if origin.strip()]
        # Wildcard only outside production-like environments
        if config.APP_ENV not in ("development", "test"):
            allowed_origins = [origin for origin in allowed_origins if origin != "*"]
    elif config.APP_ENV in ("development", "test"):
        allowed_origins = ["*"]
    else:
        allowed_origins = []

    if config.APP_ENV == "production":
        allowed_methods = ["GET", "POST", "PUT", "DELETE", "OPTIONS"]
        allowed_headers = ["Content-Type", "Authorization", "X-Request-ID"]
    else:
        allowed_methods = ["*"]
        allowed_headers = ["*"]

    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=allowed_methods,
        allow_headers=allowed_headers,
        expose_headers=[
            "X-Request-ID",
            "X-Response-Time-Ms",
            "X-RateLimit-Limit",
            "X-RateLimit-Remaining",
        ],
    )
