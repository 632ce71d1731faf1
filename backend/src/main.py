# pyright: reportMissingTypeStubs=false
"""
Settlement Backend API

A FastAPI application computing medical-staff settlements from monthly
activity spreadsheets.

Features:
- Pediatrics, gynecology, clinical-shift and clinical-admission schemes
- Fuzzy doctor-name resolution against the roster
- SQLAlchemy ORM persistence of batches and line items
- Roster and per-period rate configuration management
"""

import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api import reference_data, settlements
from core.config import LOG_LEVEL
from core.constants import CORS_ORIGINS
from core.database import create_tables

# Configure logging
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler()],
)

logger = logging.getLogger(__name__)
logger.info("Settlement API starting...")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup and shutdown events."""
    logger.info("Starting Settlement Backend API")

    try:
        create_tables()
    except Exception as e:
        logger.exception(f"Failed to create database tables: {e}")

    yield

    logger.info("Shutting down Settlement Backend API")


# Create FastAPI application
app = FastAPI(
    title="Settlement Backend",
    description="Medical-staff settlement computation",
    version="1.0.0",
    docs_url="/docs",  # Swagger UI
    redoc_url="/redoc",  # ReDoc
    lifespan=lifespan,
)

# CORS middleware for frontend integration
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)

# Include API routers
app.include_router(
    settlements.router,
    prefix="/api/settlements",
    tags=["settlements"],
    responses={
        400: {"description": "Bad request"},
        404: {"description": "Resource not found"},
        409: {"description": "Conflict"},
        422: {"description": "Batch could not be computed"},
        500: {"description": "Internal server error"},
    },
)
app.include_router(
    reference_data.router,
    prefix="/api/reference",
    tags=["reference-data"],
    responses={
        400: {"description": "Bad request"},
        404: {"description": "Resource not found"},
        500: {"description": "Internal server error"},
    },
)


@app.get(
    "/",
    summary="Root endpoint",
    description="Returns basic API information",
)
async def root() -> dict[str, str]:
    """Get API information."""
    return {
        "message": "Settlement Backend API",
        "version": "1.0.0",
        "status": "running"
    }


@app.get(
    "/health",
    summary="Health check",
    description="Returns the health status of the API",
)
async def health_check() -> dict[str, str]:
    """Check if the API is healthy and responding."""
    return {"status": "healthy"}


# Global exception handlers
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle unexpected exceptions globally."""
    logger.exception(f"Unhandled exception: {exc}")
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error", "type": "internal_error"},
    )


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError):
    """Handle ValueError exceptions."""
    logger.warning(f"ValueError: {exc}")
    return JSONResponse(
        status_code=400,
        content={"detail": str(exc), "type": "validation_error"},
    )
