# src/ipfs_gate/main.py
"""Main entry point for the upload gate."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import FastAPI, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST
from starlette.exceptions import HTTPException as StarletteHTTPException

from ipfs_gate.api import auth_router, ipfs_router
from ipfs_gate.core.logging import setup_logging
from ipfs_gate.core.settings import Settings, settings as default_settings
from ipfs_gate.services.container import GateServices, build_services

logger = logging.getLogger(__name__)


def _error_body(detail: Any) -> dict[str, Any]:
    if isinstance(detail, dict):
        return detail
    return {"error": str(detail)}


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Render HTTP errors as ``{"error": ..., "details": ...}``."""
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body(exc.detail),
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Report malformed request bodies as 400 rather than 422."""
    problems = "; ".join(
        f"{'.'.join(str(part) for part in err.get('loc', ()))}: {err.get('msg', 'invalid')}"
        for err in exc.errors()
    )
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": "Invalid request body", "details": problems},
    )


def create_app(
    app_settings: Settings | None = None,
    services: GateServices | None = None,
) -> FastAPI:
    """Build the FastAPI application around a set of gate services."""
    app_settings = app_settings or default_settings
    services = services or build_services(app_settings)

    app = FastAPI(
        title=app_settings.app_name,
        description="Community-currency gated IPFS upload proxy",
        version=app_settings.app_version,
    )
    app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=app_settings.cors_origins,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    app.add_exception_handler(StarletteHTTPException, http_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, validation_exception_handler)  # type: ignore[arg-type]

    app.include_router(auth_router)
    app.include_router(ipfs_router)

    @app.on_event("startup")
    async def on_startup() -> None:
        await services.start()
        logger.info(
            "%s %s started (min balance %s CC)",
            app_settings.app_name,
            app_settings.app_version,
            app_settings.min_balance_cc,
        )

    @app.on_event("shutdown")
    async def on_shutdown() -> None:
        await services.close()

    @app.get("/health")
    async def health_check() -> dict[str, str]:
        """Health check endpoint to verify the service is running."""
        return {"status": "ok"}

    @app.get("/metrics", include_in_schema=False)
    async def metrics() -> Response:
        """Prometheus scrape endpoint."""
        return Response(content=services.metrics.render(), media_type=CONTENT_TYPE_LATEST)

    @app.get("/")
    async def root() -> dict[str, str]:
        """Root endpoint with basic information about the API."""
        return {
            "name": app_settings.app_name,
            "version": app_settings.app_version,
            "docs": "/docs",
        }

    return app


def main() -> None:
    import uvicorn

    setup_logging(default_settings.log_level)
    uvicorn.run(
        create_app(),
        host=default_settings.host,
        port=default_settings.port,
        log_config=None,
    )


if __name__ == "__main__":
    main()
