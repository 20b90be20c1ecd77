"""FastAPI chat hub application."""

import asyncio
import math
import uuid
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.openapi.utils import get_openapi
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from chathub.api.dependencies import get_notification_dispatcher, get_rate_limiter
from chathub.infra.config import config
from chathub.infra.errors import ChatError
from chathub.infra.logging import app_logger
from chathub.infra.rate_limiter import sweep_expired_windows


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown."""
    app_logger.info("Application starting up", extra={"app_env": config.APP_ENV})

    # Same instances the routes resolve, overrides included
    dispatcher = app.dependency_overrides.get(get_notification_dispatcher, get_notification_dispatcher)()
    rate_limiter = app.dependency_overrides.get(get_rate_limiter, get_rate_limiter)()

    dispatcher.start()
    sweeper = asyncio.create_task(
        sweep_expired_windows(rate_limiter, config.RATE_LIMIT_SWEEP_SECONDS),
        name="rate-limit-sweeper",
    )

    yield

    app_logger.info("Application shutting down")
    sweeper.cancel()
    try:
        await sweeper
    except asyncio.CancelledError:
        pass
    await dispatcher.stop()

    from chathub.infra.database import engine
    engine.dispose()


app = FastAPI(
    title="Chat Hub API",
    description="""
    Chat Hub is a multi-channel chat service with a REST history/search API and
    a real-time WebSocket gateway.

    ## Features

    - **Messages**: Create, edit, delete and search channel messages
    - **Real-time**: Send, edit, unsend, react to and read messages over `/ws`
    - **Notifications**: New messages fan out as push notifications

    ## Authentication

    REST endpoints require a bearer token:
    - Header: `Authorization: Bearer <token>`

    The WebSocket accepts the same token as a `token` query parameter.
    Connections without a valid token are read-only.
    """,
    version="1.0.0",
    lifespan=lifespan,
    openapi_tags=[
        {
            "name": "Messages",
            "description": "Channel history, search and message management",
        },
        {
            "name": "Realtime",
            "description": "WebSocket gateway for live chat events",
        },
        {
            "name": "Health",
            "description": "Health check and monitoring endpoints",
        },
    ],
)

# Setup middleware
from chathub.infra.middleware import RequestIDMiddleware, RequestLoggingMiddleware, setup_cors

app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(RequestIDMiddleware)  # runs first
setup_cors(app)

# Import and register routers
from chathub.api.routers import health, messages, realtime

app.include_router(messages.router)
app.include_router(realtime.router)
app.include_router(health.router)


def custom_openapi():
    if app.openapi_schema:
        return app.openapi_schema

    openapi_schema = get_openapi(
        title=app.title,
        version=app.version,
        description=app.description,
        routes=app.routes,
    )
    openapi_schema.setdefault("components", {}).setdefault("securitySchemes", {})
    openapi_schema["components"]["securitySchemes"]["BearerAuth"] = {
        "type": "http",
        "scheme": "bearer",
        "bearerFormat": "JWT",
        "description": "Token issued by the identity service; the user id is read from the 'id' claim.",
    }

    app.openapi_schema = openapi_schema
    return app.openapi_schema


app.openapi = custom_openapi

MAX_REQUEST_SIZE = 1024 * 1024  # 1MB


@app.middleware("http")
async def request_size_limit_middleware(request: Request, call_next):
    """Enforce request size limits."""
    content_length = request.headers.get("content-length")
    if content_length and content_length.isdigit() and int(content_length) > MAX_REQUEST_SIZE:
        return JSONResponse(
            status_code=413,
            content={"detail": f"Request too large. Maximum size: {MAX_REQUEST_SIZE} bytes"},
        )
    return await call_next(request)


# Error handlers
@app.exception_handler(ChatError)
async def chat_error_handler(request: Request, exc: ChatError):
    """Map domain errors to their HTTP status."""
    headers = None
    if exc.retry_after is not None:
        headers = {"Retry-After": str(math.ceil(exc.retry_after))}
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "code": exc.code},
        headers=headers,
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle request validation errors."""
    return JSONResponse(
        status_code=422,
        content={"detail": jsonable_encoder(exc.errors())},
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Handle HTTP exceptions."""
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle all other exceptions."""
    error_id = str(uuid.uuid4())
    app_logger.error(f"Unhandled exception: {exc}", exc_info=True, extra={"error_id": error_id})
    return JSONResponse(
        status_code=500,
        content={"detail": f"Internal server error. Error ID: {error_id}"},
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        app,
        host="0.0.0.0",
        port=8000,
        timeout_keep_alive=30,
        timeout_graceful_shutdown=30,
    )
