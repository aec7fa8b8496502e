# CareSync Access Service - hosts the access-control core behind FastAPI route guards
# Core functions: logging setup, correlation-id middleware, error envelope, router registration
# Flow: startup -> load settings + catalog -> register routes -> guard requests -> evaluate -> respond

from __future__ import annotations

import logging

import structlog
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from caresync.api.routes_access import router as access_router
from caresync.api.routes_internal import router as internal_router
from caresync.api.utils import error_response
from caresync.core.catalog import get_catalog
from caresync.core.config import get_settings
from caresync.core.security import correlation_id


def configure_logging(level: str = "INFO") -> None:
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(getattr(logging, level.upper(), logging.INFO)),
        logger_factory=structlog.PrintLoggerFactory(),
    )


settings = get_settings()
configure_logging(settings.LOG_LEVEL)

app = FastAPI(title=settings.APP_NAME, version="0.1.0")

app.include_router(internal_router)
app.include_router(access_router)


@app.on_event("startup")
async def on_startup() -> None:
    # Fail fast on a broken policy file instead of on the first request.
    get_catalog()


@app.exception_handler(HTTPException)
async def http_error_handler(request: Request, exc: HTTPException) -> JSONResponse:
    detail = exc.detail if isinstance(exc.detail, dict) else {"message": str(exc.detail)}
    response = error_response(
        code=detail.get("code", "HTTP_ERROR"),
        message=detail.get("message", ""),
        status_code=exc.status_code,
        corr_id=detail.get("corr_id") or correlation_id(),
    )
    if exc.headers:
        response.headers.update(exc.headers)
    return response


@app.middleware("http")
async def correlation_middleware(request: Request, call_next):
    inbound = request.headers.get("X-Correlation-ID")
    if inbound:
        corr = correlation_id(value=inbound)
    else:
        corr = correlation_id(force_new=True)
    request.state.correlation_id = corr
    structlog.contextvars.bind_contextvars(corr_id=corr)
    try:
        response = await call_next(request)
    except Exception as exc:  # pragma: no cover - safety net
        logging.exception("Request failed", exc_info=exc)
        body = {"error": {"code": "INTERNAL", "message": "Internal server error", "corr_id": corr}}
        response = JSONResponse(status_code=500, content=body)
    finally:
        structlog.contextvars.clear_contextvars()
    response.headers["X-Correlation-ID"] = corr
    return response
