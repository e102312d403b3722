"""
ConfSync API Main Application.

FastAPI application that hosts the sync engine for one node.
Requires Python 3.11+.
"""

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api.dependencies import get_orchestrator, get_store, set_orchestrator, set_store
from config_store import create_store
from sync.orchestrator import create_orchestrator
from utils.config import get_settings
from utils.exceptions import ConfSyncError
from utils.logger import bind_node_context, configure_logging, get_logger

logger = get_logger("api")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """
    Application lifespan manager.

    Connects the store and starts the sync engine; stops both on shutdown.
    """
    configure_logging()
    settings = get_settings()
    logger.info(
        "starting_application",
        app_name=settings.app_name,
        version=settings.app_version,
        environment=settings.environment,
    )

    store = create_store(settings)
    try:
        await store.connect()
        await store.initialize_schema()
        set_store(store)
    except ConfSyncError as e:
        logger.error("store_initialization_failed", backend=settings.store.backend, error=str(e))
        # Continue without the engine for graceful degradation
        set_store(None)

    if get_store() is not None and settings.sync.enabled:
        try:
            orchestrator = create_orchestrator(store, settings)
        except ConfSyncError as e:
            logger.error("node_identity_failed", error=str(e))
        else:
            bind_node_context(orchestrator.node_id)
            await orchestrator.start()
            set_orchestrator(orchestrator)

    yield

    # Cleanup
    logger.info("shutting_down_application")
    orchestrator = get_orchestrator()
    if orchestrator:
        await orchestrator.stop()
        set_orchestrator(None)
    store = get_store()
    if store:
        await store.close()
        set_store(None)


def create_app(manage_engine: bool = True) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        manage_engine: Start and stop the store and sync engine with the app.
            When False the caller installs them with set_store/set_orchestrator.

    Returns:
        Configured FastAPI instance
    """
    settings = get_settings()

    application = FastAPI(
        title=settings.app_name,
        description="Configuration synchronization across server nodes",
        version=settings.app_version,
        lifespan=lifespan if manage_engine else None,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
    )

    # CORS middleware
    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.api.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Global exception handler
    @application.exception_handler(Exception)
    async def global_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        logger.exception(
            "unhandled_exception",
            path=request.url.path,
            method=request.method,
            error=str(exc),
        )
        return JSONResponse(
            status_code=500,
            content={
                "error": "Internal server error",
                "message": str(exc) if settings.is_development else "An unexpected error occurred",
            },
        )

    # Health check endpoint
    @application.get("/health")
    async def health_check() -> dict[str, Any]:
        """Health check endpoint."""
        orchestrator = get_orchestrator()
        return {
            "status": "healthy",
            "version": settings.app_version,
            "store": "connected" if get_store() else "disconnected",
            "sync": orchestrator.state.value if orchestrator else "disabled",
        }

    # Import and include routers here to avoid circular imports
    from api.routes import sync

    application.include_router(sync.router, prefix="/sync", tags=["Sync"])

    return application


# Create the application instance
app = create_app()
