"""FastAPI application factory."""

from __future__ import annotations

from fastapi import FastAPI

from courier_escrow_service.config import get_settings
from courier_escrow_service.core.exceptions import register_exception_handlers
from courier_escrow_service.core.lifespan import lifespan
from courier_escrow_service.core.middleware import RequestValidationMiddleware
from courier_escrow_service.routers import admin, bids, disputes, health, jobs, users, wallet


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title=f"{settings.service.name} Service",
        version=settings.service.version,
        lifespan=lifespan,
    )

    register_exception_handlers(app)

    app.include_router(health.router, tags=["Operations"])
    app.include_router(users.router, tags=["Users"])
    app.include_router(jobs.router, tags=["Jobs"])
    app.include_router(bids.router, tags=["Bids"])
    app.include_router(disputes.router, tags=["Disputes"])
    app.include_router(wallet.router, tags=["Wallet"])
    app.include_router(admin.router, tags=["Admin"])

    app.add_middleware(
        RequestValidationMiddleware,
        max_body_size=settings.request.max_body_size,
    )

    return app
