"""
FastAPI application entry point for the menu backend.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from menu_backend.config import get_settings
from menu_backend.dependencies import Services, build_services
from menu_backend.errors import MenuBackendError, StorageUnavailable, Unauthenticated
from menu_backend.routes import router

logger = logging.getLogger(__name__)


async def handle_backend_error(request: Request, exc: MenuBackendError) -> JSONResponse:
    if isinstance(exc, StorageUnavailable):
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, Unauthenticated) else None
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": exc.message},
        headers=headers,
    )


def create_app(services: Optional[Services] = None) -> FastAPI:
    settings = services.settings if services else get_settings()
    app = FastAPI(title="Menu Builder Backend (FastAPI)", version="2.0.0")
    app.state.services = services or build_services(settings)
    app.add_exception_handler(MenuBackendError, handle_backend_error)
    app.include_router(router, prefix=settings.api_prefix)
    return app
