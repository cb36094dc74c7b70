"""
HTTP middleware and exception handlers for the PDF Forge API.

Order, outermost first: request id, request logging, body size limit,
API key, rate limit. Handlers turn ConversionError and validation failures
into the standard JSON error body.
"""

import logging
import time
import uuid

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from pdf_forge.core.config import Settings
from pdf_forge.utils.error_handler import ConversionError, create_error_response, http_status_for
from pdf_forge.utils.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

PUBLIC_PATHS = ("/health", "/healthz", "/metrics")
REQUEST_ID_HEADER = "X-Request-ID"


def get_request_id(request: Request) -> str:
    return getattr(request.state, "request_id", "") or ""


def _client_id(request: Request) -> str:
    api_key = request.headers.get("X-API-Key")
    if api_key:
        return f"key:{api_key}"
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def _provided_api_key(request: Request) -> str:
    api_key = request.headers.get("X-API-Key", "")
    if api_key:
        return api_key
    auth = request.headers.get("Authorization", "")
    if auth.startswith("Bearer "):
        return auth[len("Bearer "):].strip()
    return ""


def install_middleware(app: FastAPI, settings: Settings, rate_limiter: RateLimiter) -> None:
    """Register middleware on ``app``. Later registrations wrap earlier ones."""

    @app.middleware("http")
    async def rate_limit(request: Request, call_next):
        if rate_limiter.enabled and request.url.path not in PUBLIC_PATHS:
            allowed, _ = await rate_limiter.check(_client_id(request))
            if not allowed:
                logger.warning(f"Rate limit exceeded for {_client_id(request)}")
                return JSONResponse(
                    status_code=429,
                    content={"error": "rate_limited", "message": "Too many requests"},
                    headers={"Retry-After": "60"},
                )
        return await call_next(request)

    @app.middleware("http")
    async def api_key_auth(request: Request, call_next):
        if settings.API_KEY and request.url.path not in PUBLIC_PATHS:
            if _provided_api_key(request) != settings.API_KEY:
                return JSONResponse(
                    status_code=401,
                    content={"error": "unauthorized", "message": "Invalid or missing API key"},
                )
        return await call_next(request)

    @app.middleware("http")
    async def body_size_limit(request: Request, call_next):
        too_large = JSONResponse(
            status_code=413,
            content={
                "error": "payload_too_large",
                "message": f"Request body exceeds {settings.MAX_BODY_SIZE} bytes",
            },
        )
        content_length = request.headers.get("content-length")
        if content_length and content_length.isdigit():
            if int(content_length) > settings.MAX_BODY_SIZE:
                return too_large
        elif request.method in ("POST", "PUT", "PATCH"):
            # Chunked upload: count bytes as they arrive and stop at the limit
            chunks = []
            total_size = 0
            async for chunk in request.stream():
                total_size += len(chunk)
                if total_size > settings.MAX_BODY_SIZE:
                    logger.warning(f"Streamed body over {settings.MAX_BODY_SIZE} bytes rejected")
                    return too_large
                chunks.append(chunk)
            # Cached body is replayed to the route, as Request.body() does
            request._body = b"".join(chunks)
        return await call_next(request)

    @app.middleware("http")
    async def request_logging(request: Request, call_next):
        start_time = time.monotonic()
        response = await call_next(request)
        duration_ms = int((time.monotonic() - start_time) * 1000)
        logger.info(
            f"{request.method} {request.url.path} - status: {response.status_code}, "
            f"duration: {duration_ms}ms, request_id: {get_request_id(request)}"
        )
        return response

    @app.middleware("http")
    async def request_id(request: Request, call_next):
        request.state.request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request.state.request_id
        return response

    if settings.cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.cors_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )


def install_exception_handlers(app: FastAPI) -> None:

    @app.exception_handler(ConversionError)
    async def conversion_error_handler(request: Request, exc: ConversionError):
        return JSONResponse(
            status_code=http_status_for(exc),
            content=create_error_response(exc, get_request_id(request)),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        message = "Invalid request payload"
        if errors:
            location = ".".join(str(part) for part in errors[0].get("loc", ()) if part != "body")
            message = f"Invalid request payload: {location + ': ' if location else ''}{errors[0].get('msg', '')}"
        return JSONResponse(
            status_code=400,
            content={
                "error": "invalid_request",
                "message": message,
                "request_id": get_request_id(request),
            },
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception(f"Unhandled error on {request.method} {request.url.path}: {str(exc)}")
        return JSONResponse(
            status_code=500,
            content={"error": "internal_error", "message": "Internal server error"},
        )
