"""
FastAPI application entry point for the FieldOps backend.

Plan entitlements are enforced per route through the guards in
fieldops.entitlements; the identity itself comes from the session layer
(request.state.user_id).
"""

import os
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware

from fieldops.auth.session import SessionContextMiddleware
from fieldops.api.routes import admin_plans, plan_overrides, plan_configuration
from fieldops.config.entitlements import get_entitlement_settings
from fieldops.entitlements.middleware import install_entitlement_handlers

# Configure structured logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    logger.info("Starting FieldOps API")

    database_url = os.getenv("DATABASE_URL")
    if not database_url:
        logger.error(
            "DATABASE_URL is not set. Endpoints that need the database will return 503."
        )
        app.state.database_configured = False
    else:
        # Mask credentials for safe logging
        masked = database_url.split("@")[-1] if "@" in database_url else "(no credentials)"
        logger.info("DATABASE_URL configured", extra={"host_db": masked})
        app.state.database_configured = True

    settings = get_entitlement_settings()
    logger.info("Entitlement engine ready", extra={
        "cache_enabled": settings.cache_enabled,
        "cache_ttl_seconds": settings.cache_ttl_seconds,
        "redis_configured": bool(os.getenv("REDIS_URL")),
    })

    yield

    logger.info("Shutting down FieldOps API")


async def global_exception_handler(request: Request, exc: Exception):
    """Handle unhandled exceptions with proper logging."""
    logger.error(
        "Unhandled exception",
        extra={
            "user_id": getattr(request.state, "user_id", None),
            "error": str(exc),
            "error_type": type(exc).__name__,
            "path": request.url.path
        },
        exc_info=True
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "Internal server error",
            "detail": "An unexpected error occurred"
        }
    )


def create_app() -> FastAPI:
    """Build the FastAPI application with middleware, handlers and routes."""
    app = FastAPI(
        title="FieldOps API",
        description="Field service management backend with plan-based entitlements",
        version="1.0.0",
        lifespan=lifespan
    )

    cors_origins = os.getenv("CORS_ORIGINS", "http://localhost:3000").split(",")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Plan-ID", "X-Plan-Features"],
    )
    app.add_middleware(SessionContextMiddleware)

    install_entitlement_handlers(app)
    app.add_exception_handler(Exception, global_exception_handler)

    @app.get("/health", include_in_schema=False)
    def health():
        return {"status": "ok"}

    # Admin routes (require admin role)
    app.include_router(admin_plans.router)
    app.include_router(plan_overrides.router)

    # Client routes (require authentication)
    app.include_router(plan_configuration.router)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("PORT", 8000))
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=port,
        reload=os.getenv("ENV") == "development"
    )
