"""
main.py — FastAPI application entry point.
===========================================
Assembles routers, configures CORS, adds exception handlers and wires the
service container into the app lifespan.

Run with:
    uvicorn hydrocontrol.main:app --reload --port 8000
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from hydrocontrol import __version__
from hydrocontrol.api.router_devices import router as devices_router
from hydrocontrol.api.router_networks import router as networks_router
from hydrocontrol.api.router_stream import router as stream_router
from hydrocontrol.api.router_training import router as training_router
from hydrocontrol.config import Settings
from hydrocontrol.core.errors import CoordinatorError
from hydrocontrol.services.container import Services, build_services

logger = logging.getLogger(__name__)


def create_app(settings: Optional[Settings] = None, services: Optional[Services] = None) -> FastAPI:
    """Build the app; pass `services` to run it against injected collaborators."""
    settings = settings or (services.settings if services else Settings())

    # -----------------------------------------------------------------------
    # Logging
    # -----------------------------------------------------------------------
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s [%(levelname)s] %(name)s — %(message)s",
    )

    # -----------------------------------------------------------------------
    # Lifespan: startup / shutdown
    # -----------------------------------------------------------------------

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        svc = services or build_services(settings)
        app.state.services = svc
        logger.info("Starting %s", settings.app_name)
        await svc.start()
        networks = await svc.repository.list_networks()
        logger.info("%d network(s) ready", len(networks))
        yield
        await svc.stop()
        logger.info("Shut down %s", settings.app_name)

    app = FastAPI(
        title=settings.app_name,
        description=(
            "Coordinates a simulated water distribution network with a DRL "
            "control agent: device control, hydraulic simulation, training "
            "and live status streaming."
        ),
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # -----------------------------------------------------------------------
    # Global exception handlers
    # -----------------------------------------------------------------------

    @app.exception_handler(CoordinatorError)
    async def coordinator_error_handler(request: Request, exc: CoordinatorError):
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError):
        return JSONResponse(
            status_code=400,
            content={"error": "Bad Request", "detail": str(exc), "changed": False},
        )

    @app.exception_handler(Exception)
    async def general_error_handler(request: Request, exc: Exception):
        logger.exception("Unhandled exception: %s", exc)
        return JSONResponse(
            status_code=500,
            content={"error": "Internal Server Error", "detail": "An unexpected error occurred."},
        )

    # -----------------------------------------------------------------------
    # Routers
    # -----------------------------------------------------------------------

    app.include_router(networks_router)
    app.include_router(devices_router)
    app.include_router(training_router)
    app.include_router(stream_router)

    @app.get("/", tags=["Health"])
    async def health_check(request: Request):
        """Root health check endpoint."""
        svc: Services = request.app.state.services
        return {
            "status": "healthy",
            "service": settings.app_name,
            "version": __version__,
            "networks": len(await svc.repository.list_networks()),
            "activeTrainings": svc.scheduler.active_models,
            "subscribers": svc.broadcaster.subscriber_count,
        }

    return app


app = create_app()
