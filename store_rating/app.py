"""
Store Rating - FastAPI Application Entrypoint

This module initializes the FastAPI application with:
- CORS and security middleware
- Envelope-producing exception handlers
- Authentication and admin routes
- Database, refresh token registry and sweeper lifecycle

Security: both JWT secrets are validated when settings load; the
process does not start without them.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from store_rating import __version__
from store_rating.admin.routes import router as admin_router
from store_rating.auth.accounts import AccountStore
from store_rating.auth.database import get_engine, get_session_factory, init_db
from store_rating.auth.registry import RefreshTokenSweeper, build_registry
from store_rating.auth.routes import router as auth_router
from store_rating.auth.service import AuthService
from store_rating.config import settings
from store_rating.gateway.error_handling import register_exception_handlers
from store_rating.gateway.middleware import SecurityMiddleware
from store_rating.logging import configure_logging, get_logger


logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Startup:
        - Configure logging, warn about short signing secrets
        - Initialize SQLModel database (users, refresh_tokens)
        - Build the refresh token registry and the AuthService
        - Start the expired-token sweeper

    Shutdown:
        - Stop the sweeper and dispose the engine it created
    """
    configure_logging(settings.LOG_LEVEL, settings.LOG_JSON)
    for name in settings.weak_secrets():
        logger.warning("config.weak_signing_secret", setting=name)

    # Tests may provide their own engine
    engine = getattr(app.state, "db_engine", None)
    owns_engine = engine is None
    if owns_engine:
        engine = get_engine(settings.DATABASE_URL)
    init_db(engine)

    session_factory = get_session_factory(engine)
    registry = build_registry(
        settings.REFRESH_TOKEN_BACKEND,
        session_factory,
        settings.MAX_REFRESH_TOKENS_PER_ACCOUNT,
    )
    accounts = AccountStore(session_factory)

    app.state.db_engine = engine
    app.state.db_session_factory = session_factory
    app.state.account_store = accounts
    app.state.token_registry = registry
    app.state.auth_service = AuthService(accounts, registry)

    sweeper = RefreshTokenSweeper(registry, settings.REFRESH_TOKEN_SWEEP_INTERVAL_SECONDS)
    await sweeper.start()
    app.state.token_sweeper = sweeper
    logger.info(
        "app.started",
        environment=settings.ENVIRONMENT,
        registry_backend=settings.REFRESH_TOKEN_BACKEND,
    )

    yield

    # Shutdown
    await sweeper.stop()
    if owns_engine:
        engine.dispose()
    app.state.db_engine = None
    logger.info("app.stopped")


app = FastAPI(
    title="Store Rating",
    description="Authentication and authorization service for the store rating platform",
    version=__version__,
    lifespan=lifespan,
)

# CORS - frontend origins only
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
    allow_headers=["Authorization", "Content-Type", "X-Request-ID"],
)

# Request IDs, security headers, request logging
app.add_middleware(SecurityMiddleware)

register_exception_handlers(app)

app.include_router(auth_router, prefix="/api")
app.include_router(admin_router, prefix="/api")


@app.get("/health")
async def health_check():
    """
    Health check endpoint.
    Returns service status, database reachability and registry occupancy.
    """
    database_healthy = True
    try:
        with app.state.db_engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except SQLAlchemyError:
        database_healthy = False

    try:
        stats = app.state.token_registry.stats().model_dump()
    except SQLAlchemyError:
        stats = None

    return {
        "status": "healthy" if database_healthy else "degraded",
        "version": __version__,
        "services": {
            "database": database_healthy,
            "refresh_token_registry": settings.REFRESH_TOKEN_BACKEND,
        },
        "refresh_tokens": stats,
    }


@app.get("/")
async def root():
    """Root endpoint with API information."""
    return {
        "name": "Store Rating",
        "version": __version__,
        "docs": "/docs",
        "health": "/health",
    }
