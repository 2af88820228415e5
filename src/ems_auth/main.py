"""EMS Auth Service

Main FastAPI application entry point.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from ems_auth.api.routes import auth_router
from ems_auth.config.settings import Settings, get_settings
from ems_auth.core.auth.factory import create_auth_service
from ems_auth.infrastructure.database import close_db, create_engine, create_session_factory, init_db

logger = logging.getLogger(__name__)


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Build the FastAPI application for the given settings."""
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan events"""
        # Startup
        logger.info(f"Starting {settings.service_name} v{settings.service_version}")
        logger.info(f"Environment: {settings.environment}")

        engine = create_engine(settings)
        app.state.engine = engine
        if settings.db_create_tables:
            await init_db(engine)
            logger.info("Database tables created")

        app.state.auth_service = create_auth_service(settings, create_session_factory(engine))
        if settings.bootstrap_admins:
            created = await app.state.auth_service.seed_admins(settings.bootstrap_admins)
            logger.info(f"Bootstrap admins created: {len(created)}")
        logger.info("Authentication service initialized")

        yield

        # Shutdown
        logger.info("Shutting down Auth Service")
        await close_db(engine)
        logger.info("Database connections closed")

    app = FastAPI(
        title="EMS Auth Service",
        version=settings.service_version,
        description="Multi-provider authentication and session token service for the endpoint monitoring platform",
        lifespan=lifespan
    )
    app.state.settings = settings

    # CORS configuration
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=settings.cors_allow_methods,
        allow_headers=settings.cors_allow_headers,
    )

    @app.get("/health")
    async def health_check(request: Request):
        """Service health, including whether the user database answers"""
        database = "not_initialized"
        engine = getattr(request.app.state, "engine", None)
        if engine is not None:
            try:
                async with engine.connect() as conn:
                    await conn.execute(text("SELECT 1"))
                database = "connected"
            except SQLAlchemyError as e:
                logger.warning(f"Health check: database unavailable ({e})")
                database = "unavailable"

        return {
            "status": "healthy" if database == "connected" else "degraded",
            "service": settings.service_name,
            "version": settings.service_version,
            "environment": settings.environment,
            "database": database,
        }

    app.include_router(auth_router)

    @app.exception_handler(Exception)
    async def global_exception_handler(request, exc):
        """Global exception handler for unhandled errors"""
        logger.error(f"Unhandled exception: {exc}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={
                "error": "internal_server_error",
                "message": "An unexpected error occurred. Please try again later."
            }
        )

    return app


settings = get_settings()
configure_logging(settings)
app = create_app(settings)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "ems_auth.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower()
    )
