"""
Café Aroma - FastAPI Application Entrypoint

This module initializes the FastAPI application with:
- Logging configuration
- CORS and security middleware
- AuthError -> JSON exception handlers
- Authentication and admin routes under /api
- Database lifecycle management

Run with:
    uvicorn aroma.app:app --reload
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from aroma.admin.routes import router as admin_router
from aroma.auth.database import get_engine, get_session_factory, init_db
from aroma.auth.errors import register_exception_handlers
from aroma.auth.routes import router as auth_router
from aroma.config import settings
from aroma.gateway.middleware import SecurityMiddleware


logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

VERSION = "1.0.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Startup:
        - Create the engine and tables (users, user_security)
        - Expose a session factory on app.state

    Shutdown:
        - Dispose the engine
    """
    if getattr(app.state, "db_session_factory", None) is None:
        engine = get_engine(settings.DATABASE_URL)
        init_db(engine)
        app.state.db_engine = engine
        app.state.db_session_factory = get_session_factory(engine)
        owns_engine = True
    else:
        # Tests inject their own engine
        engine = app.state.db_engine
        owns_engine = False

    if not settings.SECRET_KEY:
        logger.error("SECRET_KEY is not set; logins will fail with INTERNAL")

    logger.info("Café Aroma backend starting [%s]", settings.ENVIRONMENT)

    yield

    if owns_engine:
        engine.dispose()
        app.state.db_session_factory = None
    logger.info("Café Aroma backend stopped")


app = FastAPI(
    title="Café Aroma",
    description="Storefront backend: accounts, sessions and account security",
    version=VERSION,
    lifespan=lifespan,
)

# Cookie-based sessions need credentials on cross-origin requests
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE", "PUT", "PATCH"],
    allow_headers=["Authorization", "Content-Type", "X-Request-ID"],
)

app.add_middleware(SecurityMiddleware)

register_exception_handlers(app)

app.include_router(auth_router, prefix="/api")
app.include_router(admin_router, prefix="/api/admin", tags=["admin"])


@app.get("/health")
async def health_check():
    """Health check endpoint for deployment probes."""
    return {
        "status": "healthy",
        "version": VERSION,
        "environment": settings.ENVIRONMENT,
    }


@app.get("/")
async def root():
    """Root endpoint with API information."""
    return {
        "name": "Café Aroma",
        "version": VERSION,
        "docs": "/docs",
        "health": "/health",
    }
