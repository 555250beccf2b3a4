from __future__ import annotations

import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, PlainTextResponse
from starlette.exceptions import HTTPException
from starlette.middleware.cors import CORSMiddleware

from latch_gateway.config import Settings, settings as default_settings
from latch_gateway.http_errors import GatewayError, StoreUnavailableError
from latch_gateway.logging_config import setup_logging
from latch_gateway.routes.device import router as device_router
from latch_gateway.routes.schema import router as schema_router
from latch_gateway.routes.smartthings_oauth import router as smartthings_oauth_router
from latch_gateway.store import init_store

logger = logging.getLogger(__name__)

LIVENESS_TEXT = "Smart Home Backend Running ✔"


def create_app(app_settings: Optional[Settings] = None) -> FastAPI:
    settings = app_settings or default_settings
    setup_logging(settings.log_level)

    docs_url = "/docs" if settings.app_env != "prod" else None
    redoc_url = "/redoc" if settings.app_env != "prod" else None
    openapi_url = "/openapi.json" if settings.app_env != "prod" else None
    app = FastAPI(title=settings.app_name, docs_url=docs_url, redoc_url=redoc_url, openapi_url=openapi_url)
    app.state.settings = settings
    app.state.store = None

    # CORS
    origins_raw = (settings.cors_allow_origins or "").strip()
    if origins_raw == "*" or origins_raw == "":
        origins = ["*"]
    else:
        origins = [o.strip() for o in origins_raw.split(",") if o.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=origins != ["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.on_event("startup")
    def _startup() -> None:
        if app.state.store is not None:
            raise RuntimeError("State store already initialized")
        app.state.store = init_store(settings.database_url)

    @app.on_event("shutdown")
    def _shutdown() -> None:
        if app.state.store is not None:
            app.state.store.dispose()
            app.state.store = None

    @app.get("/", tags=["meta"], response_class=PlainTextResponse)
    def root() -> str:
        return LIVENESS_TEXT

    @app.get("/health", tags=["meta"], response_class=PlainTextResponse)
    def health() -> str:
        return "ok"

    @app.exception_handler(GatewayError)
    async def gateway_error_handler(request: Request, exc: GatewayError) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content=exc.body(), headers=exc.headers())

    @app.exception_handler(StoreUnavailableError)
    async def store_unavailable_handler(request: Request, exc: StoreUnavailableError) -> JSONResponse:
        data = {"error": "store_unavailable", "error_description": exc.message}
        if settings.app_env != "prod" and exc.details:
            data["details"] = exc.details
        return JSONResponse(status_code=503, content=data)

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
        detail = exc.detail
        if isinstance(detail, dict) and "error" in detail:
            body = detail
        else:
            body = {"error": "http_error", "error_description": str(detail)}
        return JSONResponse(status_code=exc.status_code, content=body, headers=exc.headers)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=422,
            content={
                "error": "invalid_body",
                "error_description": "Request validation failed",
                "details": jsonable_encoder(exc.errors()),
            },
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        # Keep errors consistent for clients. In prod, avoid leaking internals.
        content = {"error": "server_error", "error_description": "Internal Server Error"}
        if settings.app_env != "prod":
            content["details"] = str(exc)
        return JSONResponse(status_code=500, content=content)

    app.include_router(device_router)
    app.include_router(smartthings_oauth_router)
    app.include_router(schema_router)
    return app


app = create_app()
