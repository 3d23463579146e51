"""
CareConnect - FastAPI Application

Main entry point for the backend API.
Provides endpoints for subscription access, billing, and support messaging.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

from careconnect.config.settings import settings
from careconnect.infrastructure.exceptions import (
    CareConnectError,
    ConfigurationError,
    ConversationClosedError,
    NotFoundError,
    StoreUnavailableError,
    ValidationError,
)
from careconnect.infrastructure.db.dependencies import SessionDep
from careconnect.infrastructure.db.repositories import store_operation

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown."""
    # Startup
    logger.info(f"CareConnect Backend starting in {settings.environment} mode...")

    if settings.database_url:
        try:
            from careconnect.infrastructure.db.database import init_db
            await init_db()
            logger.info("Database connection pool initialized")
        except Exception as e:
            logger.warning(f"Database initialization skipped: {e}")
    else:
        logger.warning("DATABASE_URL not set; data endpoints will fail")

    yield

    # Shutdown
    if settings.database_url:
        try:
            from careconnect.infrastructure.db.database import close_db
            await close_db()
            logger.info("Database connection pool closed")
        except Exception as e:
            logger.warning(f"Database shutdown error: {e}")

    logger.info("CareConnect Backend shutting down...")


app = FastAPI(
    title="CareConnect",
    description="Marketplace backend connecting care providers with care seekers",
    version="1.0.0",
    lifespan=lifespan,
    debug=settings.debug,
)

# CORS configuration from Settings
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============================================================================
# Exception Handlers
# ============================================================================

@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    """Handle validation errors."""
    return JSONResponse(
        status_code=400,
        content=exc.to_dict(),
    )


@app.exception_handler(NotFoundError)
async def not_found_error_handler(request: Request, exc: NotFoundError):
    """Handle not found errors."""
    return JSONResponse(
        status_code=404,
        content=exc.to_dict(),
    )


@app.exception_handler(ConversationClosedError)
async def conversation_closed_handler(request: Request, exc: ConversationClosedError):
    """Handle sends to closed conversations."""
    return JSONResponse(
        status_code=409,
        content=exc.to_dict(),
    )


@app.exception_handler(StoreUnavailableError)
async def store_unavailable_handler(request: Request, exc: StoreUnavailableError):
    """Handle transient store failures; clients may retry."""
    return JSONResponse(
        status_code=503,
        content=exc.to_dict(),
        headers={"Retry-After": "1"},
    )


@app.exception_handler(ConfigurationError)
async def configuration_error_handler(request: Request, exc: ConfigurationError):
    """Handle missing configuration."""
    logger.error(f"Configuration error: {exc.message}")
    return JSONResponse(
        status_code=500,
        content=exc.to_dict(),
    )


@app.exception_handler(CareConnectError)
async def general_error_handler(request: Request, exc: CareConnectError):
    """Handle all other application errors."""
    return JSONResponse(
        status_code=500,
        content=exc.to_dict(),
    )


# ============================================================================
# Health Check
# ============================================================================

@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "service": "careconnect"}


@app.get("/health/ready")
async def readiness_check(session: SessionDep):
    """Readiness check; fails with 503 while the database is unreachable."""
    async with store_operation("readiness_check"):
        await session.execute(text("SELECT 1"))
    return {"status": "ready"}


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "message": "CareConnect API",
        "version": "1.0.0",
        "docs": "/docs",
    }


# ============================================================================
# Import and register routers
# ============================================================================

from careconnect.api.routes import admin, conversations, subscriptions, webhooks  # noqa: E402

app.include_router(subscriptions.router, prefix="/api", tags=["Subscriptions"])
app.include_router(webhooks.router, prefix="/api", tags=["Webhooks"])
app.include_router(conversations.router, prefix="/api", tags=["Conversations"])
app.include_router(admin.router, prefix="/api")
