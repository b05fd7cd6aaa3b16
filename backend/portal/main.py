"""FastAPI application entrypoint.

Builds the app, wires middleware and exception handlers, and mounts the
resource routers under `/api`. Controllers live in `portal.routes`; the
business rules they call live in `portal.services`.
"""

import json
import logging
import time
import traceback
import uuid
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from sqlalchemy.exc import IntegrityError
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import __version__
from .config import settings
from .database import create_db_and_tables
from .errors import Conflict, PortalError
from .responses import error_response
from .routes import api_router
from .utils.rate_limit import InMemoryRateLimiter

app = FastAPI(title="Learning & Careers Portal API", version=__version__)
logger = logging.getLogger("portal.api")
if not logger.handlers:
    logging.basicConfig(level=settings.LOG_LEVEL)
rate_limiter = InMemoryRateLimiter()

if settings.ALLOW_DEV_CORS:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
else:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.FRONTEND_URL],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

create_db_and_tables()


def _client(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def _request_line(request: Request, req_id: str, started: float, **extra) -> str:
    return json.dumps(
        {
            "request_id": req_id,
            "path": request.url.path,
            "method": request.method,
            **extra,
            "duration_ms": round((time.perf_counter() - started) * 1000.0, 2),
            "client": _client(request),
        },
        ensure_ascii=True,
    )


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    req_id = request.headers.get("X-Request-ID", uuid.uuid4().hex)
    request.state.request_id = req_id
    started = time.perf_counter()

    if request.url.path.startswith("/api/auth"):
        allowed, retry_after = rate_limiter.allow(
            _client(request), settings.RATE_LIMIT_MAX_REQUESTS, settings.RATE_LIMIT_WINDOW_SECONDS
        )
        if not allowed:
            logger.warning("rate_limited %s", _request_line(request, req_id, started, status_code=429))
            return error_response(
                429,
                "Too many requests from this IP, please try again later.",
                headers={"Retry-After": str(retry_after), "X-Request-ID": req_id},
            )

    response: Response
    try:
        response = await call_next(request)
    except Exception:
        logger.exception("request_failed %s", _request_line(request, req_id, started))
        raise
    response.headers["X-Request-ID"] = req_id
    logger.info("request_done %s", _request_line(request, req_id, started, status_code=response.status_code))
    return response


@app.exception_handler(PortalError)
async def portal_error_handler(request: Request, exc: PortalError):
    return error_response(exc.status_code, exc.message, errors=exc.errors)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = []
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path")]
        errors.append({
            "field": ".".join(loc),
            "message": err.get("msg", "Invalid value"),
            "value": err.get("input"),
        })
    return error_response(400, "Validation failed", errors=errors)


@app.exception_handler(IntegrityError)
async def integrity_error_handler(request: Request, exc: IntegrityError):
    logger.warning("integrity_error on %s %s: %s", request.method, request.url.path, exc.orig)
    conflict = Conflict()
    return error_response(conflict.status_code, conflict.message)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    message = exc.detail if isinstance(exc.detail, str) else "Request failed"
    if exc.status_code == 404 and message == "Not Found":
        message = f"Route {request.url.path} not found"
    return error_response(exc.status_code, message, headers=getattr(exc, "headers", None))


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("unhandled error on %s %s", request.method, request.url.path)
    stack = None if settings.is_production else "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    return error_response(500, "Server Error", stack=stack)


app.include_router(api_router, prefix="/api")


@app.get("/health")
def health():
    """Lightweight health check for uptime monitoring."""
    return {
        "status": "ok",
        "version": __version__,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
