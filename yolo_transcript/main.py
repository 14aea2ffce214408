"""FastAPI application entrypoint."""
from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import AsyncIterator, List

import structlog
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import get_settings
from .exceptions import ConfigurationError, InsufficientCreditsError, ProviderError
from .logging_config import configure_logging
from .metrics import API_ERRORS, QUEUE_LENGTH
from .routers import analytics, auth, blog, credits, integrations, paddle, transcriptions, vocabulary, webhook
from .storage import get_media_storage
from .taskqueue.backend import QueueUnavailableError, obtain_queue, queue_length

settings = get_settings()
configure_logging(settings.log_level)
logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(_: FastAPI) -> AsyncIterator[None]:
    get_media_storage().ensure_bucket()
    logger.info("startup", app_env=settings.app_env)
    yield


def _error_response(status_code: int, message: str, **extra) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message, **extra})


def _install_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        response = _error_response(exc.status_code, str(exc.detail))
        if exc.headers:
            response.headers.update(exc.headers)
        return response

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        return _error_response(422, "Invalid request", details=jsonable_encoder(exc.errors()))

    @app.exception_handler(InsufficientCreditsError)
    async def insufficient_credits_handler(request: Request, exc: InsufficientCreditsError) -> JSONResponse:
        return _error_response(
            402,
            "Insufficient credits",
            credits_needed=exc.needed,
            credits_available=exc.available,
        )

    @app.exception_handler(ProviderError)
    async def provider_error_handler(request: Request, exc: ProviderError) -> JSONResponse:
        logger.warning(
            "provider_error",
            provider=exc.provider,
            upstream_status=exc.status_code,
            path=request.url.path,
            error=str(exc),
        )
        return _error_response(502, str(exc), provider=exc.provider, upstream_status=exc.status_code)

    @app.exception_handler(ConfigurationError)
    async def configuration_error_handler(request: Request, exc: ConfigurationError) -> JSONResponse:
        logger.error("configuration_error", path=request.url.path, error=str(exc))
        return _error_response(500, str(exc))

    @app.exception_handler(QueueUnavailableError)
    async def queue_unavailable_handler(request: Request, exc: QueueUnavailableError) -> JSONResponse:
        return _error_response(503, str(exc))

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        API_ERRORS.inc()
        logger.exception("unhandled_exception", path=request.url.path, exc_info=exc)
        return _error_response(500, "Internal Server Error")


def _cors_origins() -> List[str]:
    if settings.frontend_origin:
        return ["*"] if settings.frontend_origin == "*" else [settings.frontend_origin]
    if settings.app_env in ("development", "test"):
        return ["*"]
    return [settings.app_url]


def _build_app() -> FastAPI:
    app = FastAPI(
        title=settings.api_title,
        version=settings.api_version,
        description=settings.api_description,
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=_cors_origins(),
        allow_origin_regex=settings.frontend_origin_regex,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    Instrumentator().instrument(app, metric_namespace=settings.prometheus_namespace).expose(app)
    _install_exception_handlers(app)

    for module in (auth, transcriptions, credits, webhook, paddle, integrations, vocabulary, analytics, blog):
        app.include_router(module.router)

    @app.get("/healthz")
    async def healthcheck() -> JSONResponse:
        queue, used_fallback = obtain_queue()
        QUEUE_LENGTH.set(float(queue_length(queue)))
        return JSONResponse(
            {
                "status": "ok",
                "time": datetime.now(UTC).isoformat(),
                "queue_backend": "memory" if used_fallback else "redis",
            }
        )

    return app


app = _build_app()


def create_app() -> FastAPI:
    return app
