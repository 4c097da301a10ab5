"""
ParkFlow - Main Application
FastAPI entry point with all configurations.
"""

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from contextlib import asynccontextmanager
from typing import Optional
import logging
import sys

# Import routers
from parkflow.routers import (
    lots_router,
    spots_router,
    sessions_router,
    simulator_router,
    websocket_router,
)

from parkflow.config import Settings, get_settings
from parkflow.exceptions import ParkFlowError
from parkflow.security.firebase_auth import init_firebase
from parkflow.services.container import ServiceContainer
from parkflow.utils.helpers import utcnow

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[
        logging.StreamHandler(sys.stdout)
    ]
)
logger = logging.getLogger(__name__)

API_VERSION = "1.0.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifecycle manager.
    Services are initialized, started and stopped in a fixed order.
    """
    services: ServiceContainer = app.state.services
    logger.info("Starting ParkFlow...")

    init_firebase(services.settings)
    services.init()
    services.start()
    logger.info("ParkFlow is ready")

    yield

    logger.info("Shutting down ParkFlow...")
    await services.stop()
    logger.info("ParkFlow shutdown complete")


def create_app(
    services: Optional[ServiceContainer] = None,
    settings: Optional[Settings] = None
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        services: Pre-built service container (tests pass their own)
        settings: Settings to build the container from when none is given

    Returns:
        FastAPI: The configured application
    """
    settings = settings or (services.settings if services else get_settings())
    services = services or ServiceContainer(settings)

    app = FastAPI(
        title="ParkFlow",
        description="""
        ## Real-Time Parking Occupancy

        * **Spot State Machine**: every status change follows the allowed transitions
        * **Parking Sessions**: at most one active session per user
        * **Live Updates**: spot changes, lot statistics and sensor telemetry on /ws/lot-updates
        * **Sensor Simulator**: simulated arrivals, departures and sensor failures

        ### Security

        * Firebase ID token (Bearer authentication) on every HTTP endpoint
        """,
        version=API_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan
    )
    app.state.services = services

    # Configure CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ==================== EXCEPTION HANDLERS ====================

    @app.exception_handler(ParkFlowError)
    async def parkflow_exception_handler(request: Request, exc: ParkFlowError):
        """Business rule violations."""
        logger.warning(f"{request.method} {request.url.path} rejected: {exc.code}: {exc.message}")
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "success": False,
                "error": exc.code,
                "detail": exc.message,
            }
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Pydantic validation errors."""
        errors = []
        for error in exc.errors():
            errors.append({
                "field": ".".join(str(x) for x in error["loc"]),
                "message": error["msg"],
                "type": error["type"]
            })

        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={
                "success": False,
                "error": "validation_error",
                "detail": "Validation error",
                "errors": errors
            }
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        """Unexpected errors."""
        logger.error(f"Unexpected error: {exc}", exc_info=True)

        content = {
            "success": False,
            "error": "internal",
            "detail": "An unexpected error occurred",
        }
        if settings.debug:
            content["type"] = type(exc).__name__
        return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=content)

    # ==================== ROUTERS ====================

    app.include_router(lots_router)
    app.include_router(spots_router)
    app.include_router(sessions_router)
    app.include_router(simulator_router)
    app.include_router(websocket_router)

    # ==================== ROOT ENDPOINTS ====================

    @app.get(
        "/",
        tags=["Health"],
        summary="Root endpoint",
        description="Basic API information."
    )
    async def root():
        return {
            "name": "ParkFlow",
            "version": API_VERSION,
            "status": "operational",
            "documentation": "/docs",
            "websocket": "/ws/lot-updates",
            "timestamp": utcnow().isoformat()
        }

    @app.get(
        "/health",
        tags=["Health"],
        summary="Health check",
        description="System health, used by monitoring and load balancers."
    )
    async def health_check():
        return {
            "status": "healthy",
            "services": {
                "database": "connected",
                "parking_lots": await services.lots.count_lots(),
                "simulator": "running" if services.simulator.is_running else "stopped",
                "stats_broadcast": "running" if services.stats_scheduler.is_running() else "stopped",
                "websocket_connections": services.broadcaster.get_connection_count()
            },
            "timestamp": utcnow().isoformat()
        }

    return app


app = create_app()


# ==================== MAIN ENTRY POINT ====================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "parkflow.main:app",
        host="0.0.0.0",
        port=8000,
        reload=get_settings().debug,
        log_level="info"
    )
