"""Integration Hub API: FastAPI entry point.

Builds the runtime from HubConfig, registers middleware, the integrations
router and lifecycle hooks. Run with::

    uvicorn api.main:create_app --factory

The runtime is built when the app is created, so a missing encryption key
fails at startup rather than on the first request.
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, Iterable, Optional

import httpx
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api.middleware import UserMiddleware
from api.routes import router as integrations_router
from core.config import HubConfig
from core.errors import HubError
from core.integrations.registry import AdapterRegistration
from core.integrations.runtime import build_runtime
from core.observability.logging_setup import configure_logging
from core.observability.otel_setup import setup_otel

logger = logging.getLogger(__name__)

VERSION = "1.0.0"


def create_app(
    config: Optional[HubConfig] = None,
    registrations: Optional[Iterable[AdapterRegistration]] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    tracer: Any = None,
) -> FastAPI:
    """Build the API around a freshly wired runtime."""
    config = config or HubConfig.from_env()
    configure_logging(config.logging)
    if tracer is None:
        tracer = setup_otel()
    runtime = build_runtime(config, registrations=registrations, transport=transport, tracer=tracer)

    # -----------------------------------------------------------------------
    # Lifespan
    # -----------------------------------------------------------------------

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await runtime.start()
        logger.info("Integration Hub API started (%d integrations)", runtime.registry.count)
        yield
        await runtime.close()
        logger.info("Integration Hub API shut down")

    # -----------------------------------------------------------------------
    # App
    # -----------------------------------------------------------------------

    app = FastAPI(
        title="Integration Hub",
        description="Connect, store credentials for, and invoke third-party service APIs",
        version=VERSION,
        lifespan=lifespan,
    )
    app.state.runtime = runtime

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(config.cors_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(UserMiddleware)

    # -----------------------------------------------------------------------
    # Error envelopes
    # -----------------------------------------------------------------------

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=400,
            content={"success": False, "error": "Invalid request body", "details": jsonable_errors(exc)},
        )

    @app.exception_handler(HubError)
    async def hub_error_handler(request: Request, exc: HubError):
        return JSONResponse(
            status_code=exc.status_code,
            content={"success": False, "error": exc.message, "code": exc.code.value},
        )

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(status_code=500, content={"success": False, "error": "Internal server error"})

    # -----------------------------------------------------------------------
    # Routers
    # -----------------------------------------------------------------------

    app.include_router(integrations_router, prefix="/api/integrations", tags=["Integrations"])

    @app.get("/health")
    async def health():
        return {
            "status": "healthy",
            "version": VERSION,
            "integrations": runtime.registry.count,
            "store": config.store.backend,
        }

    return app


def jsonable_errors(exc: RequestValidationError) -> list[dict[str, Any]]:
    # Drop pydantic's ctx/input, which may hold arbitrary (credential) values
    return [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg", ""), "type": err.get("type", "")}
        for err in exc.errors()
    ]
