"""FastAPI application entry point for the QR links service.

Application Lifecycle Diagram
=============================
::
    ┌──────────────┐
    │  uvicorn     │
    │  startup     │
    └──────┬───────┘
           ▼
    ┌──────────────┐
    │ create_app() │  CORS, metrics, error handlers, routes
    └──────┬───────┘
           ▼
    ┌──────────────┐
    │ lifespan()   │
    │ startup:     │
    │ ServiceMgr.  │
    │ initialize() │  engine, tables, Redis, scan recorder
    └──────┬───────┘
           ▼
    ┌──────────────┐
    │ Serve HTTP   │
    │ requests     │
    └──────┬───────┘
           ▼
    ┌──────────────┐
    │ lifespan()   │
    │ shutdown:    │
    │ cleanup()    │  drain scan queue, close Redis and engine
    └──────────────┘

How to Use
===========
**Step 1 — Run with uvicorn**::
    uvicorn qrlinks.main:app --host 0.0.0.0 --port 8080 --reload

**Step 2 — Create a link**::
    curl -X POST http://localhost:8080/api/links \
         -H "X-Owner-Id: 6f1c2e0a-8c1e-4c7e-9d0b-3c8a2a1f5e11" \
         -H "Content-Type: application/json" \
         -d '{"name": "Menu", "url": "https://example.com/menu"}'

**Step 3 — Scan it**::
    curl -i http://localhost:8080/r/<slug>

Key Behaviours
===============
- Tables are created on startup when ``AUTO_CREATE_TABLES`` is set.
- A ``ServiceManager`` already present on ``app.state.services`` (tests) is
  used as-is; otherwise one is built from ``get_settings()``.
- Every ``QRLinksError`` subclass maps to its status code with a
  ``{"detail": ...}`` body.
- Prometheus metrics are exposed at ``/metrics``.
"""

__all__ = ["app", "create_app"]

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator

from qrlinks.config import get_settings
from qrlinks.dependencies import ServiceManager
from qrlinks.exceptions import QRLinksError
from qrlinks.routes import router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    # Startup
    manager = getattr(app.state, "services", None)
    if manager is None:
        manager = ServiceManager(get_settings())
        app.state.services = manager
    await manager.initialize()
    yield
    # Shutdown
    await manager.cleanup()


async def qrlinks_error_handler(request: Request, exc: QRLinksError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{exc.error_code} on {request.method} {request.url.path}: {exc.message}")
    else:
        logger.info(f"{exc.error_code} on {request.method} {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


def create_app() -> FastAPI:
    settings = get_settings()
    application = FastAPI(
        title=settings.APP_NAME,
        version="1.0.0",
        description="Dynamic QR codes with retargetable destinations and scan analytics",
        lifespan=lifespan,
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    application.add_exception_handler(QRLinksError, qrlinks_error_handler)

    Instrumentator(
        should_group_status_codes=True,
        should_ignore_untemplated=False,
        should_respect_env_var=False,
    ).instrument(application).expose(application)

    application.include_router(router)
    return application


app = create_app()
