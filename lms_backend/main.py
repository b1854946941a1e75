"""
Main application entry point for the LMS adaptive assessment engine.

This module creates the FastAPI application and registers the student
assessment, topic performance and question bank routers.

Usage:
    - Direct: python -m lms_backend.main
    - ASGI server: uvicorn lms_backend.main:app
"""

import os
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from lms_backend.config import settings
from lms_backend.common.logger import app_logger
from lms_backend.database.init_db import initialize_database, create_schema, close_database
from lms_backend.assessments.controller import (
    router as assessments_router,
    performance_router,
    bank_router,
    reset_engine_components
)

# Setup module logger
logger = app_logger.getChild("main")

# Create the FastAPI application
app = FastAPI(
    title=settings.PROJECT_NAME,
    description="Adaptive assessment engine for the LMS",
    version="1.0.0"
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=[origin.strip() for origin in settings.CORS_ORIGINS.split(",")],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Register routers
app.include_router(assessments_router, prefix=f"{settings.API_PREFIX}/student/assessments", tags=["assessments"])
app.include_router(performance_router, prefix=f"{settings.API_PREFIX}/student/performance", tags=["performance"])
app.include_router(bank_router, prefix=f"{settings.API_PREFIX}/question-bank", tags=["question-bank"])


@app.on_event("startup")
async def startup_event():
    """Initialize services on application startup."""
    try:
        await initialize_database(
            database_url=settings.DATABASE_URL,
            echo=settings.SQL_ECHO,
            pool_size=settings.DB_POOL_SIZE,
            max_overflow=settings.DB_MAX_OVERFLOW,
            pool_timeout=settings.DB_POOL_TIMEOUT
        )

        if settings.DB_CREATE_SCHEMA:
            await create_schema()

        logger.info("Application startup complete")
    except Exception as e:
        logger.error(f"Failed to initialize application: {str(e)}")
        raise


@app.on_event("shutdown")
async def shutdown_event():
    """Cleanup services on application shutdown."""
    try:
        reset_engine_components()
        await close_database()
        logger.info("Application shutdown complete")
    except Exception as e:
        logger.error(f"Error during application shutdown: {str(e)}")
        raise


@app.get("/")
async def root():
    """Root endpoint."""
    return {"message": f"Welcome to {settings.PROJECT_NAME}"}


logger.info(f"Application initialized with {len(app.routes)} routes")

# Entry point for running the application directly
if __name__ == "__main__":
    import uvicorn

    host = os.environ.get("HOST", "0.0.0.0")
    port = int(os.environ.get("PORT", 8000))
    reload_enabled = os.environ.get("RELOAD", "false").lower() == "true"

    logger.info(f"Starting server on {host}:{port} (reload: {reload_enabled})")

    uvicorn.run(
        "lms_backend.main:app",
        host=host,
        port=port,
        reload=reload_enabled,
        log_level="info"
    )
