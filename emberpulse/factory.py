from __future__ import annotations

import logging
import math
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.trustedhost import TrustedHostMiddleware

from emberpulse.api.router import api_router
from emberpulse.api.routes import health
from emberpulse.core.config import Settings, load_settings
from emberpulse.core.errors import TsdbConnectionError
from emberpulse.core.logging import configure_logging
from emberpulse.db.opentsdb import create_opentsdb_repository

logger = logging.getLogger(__name__)


def _json_safe(value: Any) -> Any:
    """Replace NaN and infinities, which strict JSON cannot carry, with their names."""
    if isinstance(value, float) and not math.isfinite(value):
        return str(value)
    if isinstance(value, dict):
        return {k: _json_safe(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_json_safe(v) for v in value]
    return value


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or load_settings()
    configure_logging(settings.log_level, json_output=settings.log_json)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.settings = settings
        repo = create_opentsdb_repository(settings)
        app.state.tsdb_repository = repo

        if settings.opentsdb_connect_on_startup:
            try:
                await repo.connect()
            except TsdbConnectionError as e:
                # Stay up and report not-ready; the next write dials again.
                logger.error("Starting without an OpenTSDB connection: %s", e)

        yield
        await repo.close()

    docs_enabled = settings.docs_enabled and not settings.is_production
    app = FastAPI(
        title="Emberpulse Time-Series API",
        version="0.1.0",
        debug=settings.debug,
        docs_url="/docs" if docs_enabled else None,
        redoc_url=None,
        openapi_url="/openapi.json" if docs_enabled else None,
        lifespan=lifespan,
    )
    app.state.settings = settings

    app.add_middleware(GZipMiddleware, minimum_size=1024)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=False,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type"],
    )
    if settings.trusted_hosts:
        app.add_middleware(TrustedHostMiddleware, allowed_hosts=settings.trusted_hosts)

    @app.middleware("http")
    async def security_headers(request, call_next):
        response = await call_next(request)
        response.headers.setdefault("X-Content-Type-Options", "nosniff")
        response.headers.setdefault("Referrer-Policy", "no-referrer")
        if settings.is_production:
            response.headers.setdefault(
                "Strict-Transport-Security", "max-age=31536000; includeSubDomains"
            )
        return response

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        # The rejected input is echoed back and may itself be a non-finite number.
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={"detail": _json_safe(jsonable_encoder(exc.errors()))},
        )

    @app.get("/", tags=["meta"])
    def root():
        return {"name": "emberpulse", "status": "ok"}

    app.include_router(health.router)
    app.include_router(api_router)
    return app
