"""
Main FastAPI application.

WHY: This is the entry point for the application. It configures middleware,
routes, exception handlers, and the reminder dispatch scheduler.
"""

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from invoicetrust.core.config import settings
from invoicetrust.core.exceptions import AppException
from invoicetrust.core.exception_handlers import (
    app_exception_handler,
    validation_exception_handler,
    http_exception_handler,
    generic_exception_handler,
)
from invoicetrust.middleware import RequestContextMiddleware
from invoicetrust.api import cron, invoices, quota, reminders, verify
from invoicetrust.services.scheduler import start_scheduler, shutdown_scheduler, get_scheduler_status


logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    """
    Create and configure FastAPI application.

    WHY: Factory pattern allows tests to build an app with their own
    dependency overrides.

    Returns:
        Configured FastAPI application instance
    """
    app = FastAPI(
        title=settings.PROJECT_NAME,
        description="Invoice sealing, public verification and automated payment reminders",
        version=settings.VERSION,
        docs_url=f"{settings.API_V1_PREFIX}/docs",
        redoc_url=f"{settings.API_V1_PREFIX}/redoc",
        openapi_url=f"{settings.API_V1_PREFIX}/openapi.json",
    )

    # Register exception handlers
    # WHY: Exception handlers keep error responses consistent and keep
    # internal details out of 500 responses.
    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)

    # Configure Request Context Middleware
    # WHY: Captures client IP, user agent, and request ID for audit logging
    # and verification attempt records.
    app.add_middleware(RequestContextMiddleware)

    # Configure CORS
    # WHY: The dashboard and the public verification page run on another origin.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health", tags=["health"])
    async def health_check() -> dict:
        """
        Health check endpoint.

        WHY: Allows load balancers and monitoring to verify service health
        without checking authentication or database connectivity.
        """
        return {
            "status": "healthy",
            "version": settings.VERSION,
            "scheduler": get_scheduler_status(),
        }

    @app.on_event("startup")
    async def startup_event():
        """
        Start the reminder dispatch scheduler.

        WHY: Deployments that drive dispatch through the cron endpoint turn
        the in-process scheduler off with REMINDER_SCHEDULER_ENABLED.
        """
        if settings.REMINDER_SCHEDULER_ENABLED:
            await start_scheduler()
        else:
            logger.info("Reminder scheduler disabled; relying on cron endpoint")

    @app.on_event("shutdown")
    async def shutdown_event():
        """Stop background jobs so an in-flight dispatch can finish."""
        await shutdown_scheduler()

    @app.get("/", tags=["root"])
    async def root() -> dict:
        """Root endpoint with API information."""
        return {
            "name": settings.PROJECT_NAME,
            "version": settings.VERSION,
            "docs": f"{settings.API_V1_PREFIX}/docs",
        }

    # Register API routers
    app.include_router(verify.router, prefix=settings.API_V1_PREFIX)
    app.include_router(invoices.router, prefix=settings.API_V1_PREFIX)
    app.include_router(reminders.router, prefix=settings.API_V1_PREFIX)
    app.include_router(quota.router, prefix=settings.API_V1_PREFIX)
    app.include_router(cron.router, prefix=settings.API_V1_PREFIX)

    return app


# Create app instance
# WHY: Creating the app instance here allows it to be imported by uvicorn.
app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "invoicetrust.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
        log_level="info" if settings.DEBUG else "warning",
    )
