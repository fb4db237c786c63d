"""Main FastAPI application."""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker

from parking_core.api.v1.router import api_router
from parking_core.config import settings
from parking_core.db.session import build_engine, build_session_factory
from parking_core.logging_config import configure_logging
from parking_core.repositories import SessionRepository, SpotRepository, VehicleRepository
from parking_core.services.parking_service import ParkingService
from parking_core.transactions.manager import TransactionManager

logger = logging.getLogger(__name__)


def create_app(
    session_factory: Optional[async_sessionmaker] = None,
    engine: Optional[AsyncEngine] = None,
) -> FastAPI:
    """Build the application around the given session factory.

    Without one, an engine is created from ``DATABASE_URL`` and disposed on
    shutdown. A caller-supplied engine is left for the caller to dispose.
    """
    owns_engine = session_factory is None and engine is None
    if session_factory is None:
        engine = engine or build_engine(
            settings.DATABASE_URL,
            echo=settings.DATABASE_ECHO,
            busy_timeout=settings.SQLITE_BUSY_TIMEOUT,
        )
        session_factory = build_session_factory(engine)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Lifespan events."""
        # Startup
        configure_logging(settings.LOG_LEVEL)
        logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")

        yield

        # Shutdown
        logger.info("Shutting down...")
        if owns_engine:
            await engine.dispose()

    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        lifespan=lifespan,
    )

    # Configure CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    transaction_manager = TransactionManager.from_settings(session_factory, settings)
    app.state.session_factory = session_factory
    app.state.transaction_manager = transaction_manager
    app.state.parking_service = ParkingService.from_settings(
        transaction_manager,
        SpotRepository(session_factory),
        VehicleRepository(session_factory),
        SessionRepository(session_factory),
        settings,
    )

    # Include routers
    app.include_router(api_router, prefix=settings.API_V1_PREFIX)

    @app.get("/")
    async def root():
        return {
            "name": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "status": "running",
        }

    @app.get("/health")
    async def health():
        """Health check endpoint."""
        stats = transaction_manager.get_transaction_statistics()
        return {"status": "healthy", "active_transactions": stats.active}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "parking_core.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower(),
    )
