"""
FastAPI application entry point.

WHAT: Main application setup and wiring
WHY: Initialize the negotiation store, sweeper and routes
HOW: Create FastAPI app, register middleware, routers, handlers
"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager

from .core.config import settings
from .core.expiry_sweeper import ExpirySweeper
from .core.negotiation_store import NegotiationStore
from .services.backend_sync import OfferBackendClient
from .utils.logger import setup_logging, get_logger
from .middleware.error_handler import register_exception_handlers
from .api.v1.router import api_router

# Setup logging
setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    WHAT: Startup and shutdown logic
    WHY: One store per process, sweeper and HTTP client closed cleanly
    HOW: Async context manager for FastAPI lifespan
    """
    # Startup
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")
    app.state.store = NegotiationStore()
    app.state.backend_client = OfferBackendClient()
    app.state.sweeper = ExpirySweeper(app.state.store)
    if settings.EXPIRY_SWEEP_ENABLED:
        app.state.sweeper.start()
    logger.info("Application startup complete")

    yield

    # Shutdown
    logger.info("Shutting down application")
    app.state.sweeper.stop()
    await app.state.backend_client.close()
    logger.info("Application shutdown complete")


# Create FastAPI app
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    lifespan=lifespan
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.get_cors_origins_list(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Register exception handlers
register_exception_handlers(app)

# Include API router
app.include_router(api_router)


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "status": "running"
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "offer_engine.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG
    )
