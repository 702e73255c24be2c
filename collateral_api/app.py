"""FastAPI application factory.

Run with ``uvicorn collateral_api.app:app``.
"""
from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from prometheus_client import make_asgi_app

from collateral_engine.config import load_settings
from collateral_engine.errors import (CollaboratorUnavailable, NotFound,
                                      StateConflict, ValidationError)
from common.logging import configure_logging

from .deps import SERVICE_NAME, current_engine, set_engine
from .routers import (auto_loan, auto_valuations, collaterals, encumbrances,
                      title_registry)

_LOG = logging.getLogger(__name__)

RETRY_AFTER_SEC = "5"


def _error(status_code: int, exc: Exception, **headers: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": str(exc)}, headers=headers or None)


async def _not_found(request: Request, exc: NotFound) -> JSONResponse:
    return _error(404, exc)


async def _invalid(request: Request, exc: ValidationError) -> JSONResponse:
    return _error(400, exc)


async def _conflict(request: Request, exc: StateConflict) -> JSONResponse:
    return _error(409, exc)


async def _unavailable(request: Request, exc: CollaboratorUnavailable) -> JSONResponse:
    _LOG.warning("collaborator unavailable: %s", exc, extra={"endpoint": request.url.path})
    return _error(503, exc, **{"Retry-After": RETRY_AFTER_SEC})


def create_app() -> FastAPI:
    """Factory used by tests and the uvicorn entrypoint."""
    configure_logging(load_settings().log_format, service_name=SERVICE_NAME)

    app = FastAPI(title="Collateral Service")
    app.include_router(collaterals.router)
    app.include_router(encumbrances.router)
    app.include_router(auto_loan.router)
    app.include_router(auto_valuations.router)
    app.include_router(title_registry.router)
    app.mount("/metrics", make_asgi_app())

    app.add_exception_handler(NotFound, _not_found)
    app.add_exception_handler(ValidationError, _invalid)
    app.add_exception_handler(StateConflict, _conflict)
    app.add_exception_handler(CollaboratorUnavailable, _unavailable)

    @app.get("/healthz")
    async def healthz():
        return {"ok": True}

    @app.on_event("shutdown")
    async def _close_providers() -> None:
        engine = current_engine()
        if engine is not None:
            await engine.aclose()
            set_engine(None)

    return app


app = create_app()
