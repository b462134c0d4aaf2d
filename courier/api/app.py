"""
FastAPI application for the Courier authorization service.

Exposes the role-management and bulk permission-check API.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware

from courier import __version__
from courier.auth import AuthContext, RoleRegistry, RoleService, require_auth, roles_router
from courier.config import Settings, configure_logging, get_settings
from courier.config_loader import load_role_configs
from courier.core.events import get_event_bus
from courier.integrations.sentry import init_sentry
from courier.storage import MetadataStorage, create_local_storage

logger = logging.getLogger(__name__)


def create_app(
    settings: Settings | None = None,
    storage: MetadataStorage | None = None,
) -> FastAPI:
    """
    Build the application.

    Args:
        settings: Settings to use (defaults to get_settings())
        storage: Document store (defaults to the in-memory store)
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(settings.log_level)
        init_sentry()

        app.state.settings = settings
        app.state.storage = storage or create_local_storage()
        app.state.event_bus = get_event_bus()

        app.state.role_registry = RoleRegistry(app.state.storage)
        await app.state.role_registry.initialize(load_role_configs(settings.role_config_path))

        app.state.role_service = RoleService(
            app.state.storage,
            app.state.role_registry,
            bus=app.state.event_bus,
            settings=settings,
        )

        expired = await app.state.role_service.cleanup_expired_requests()
        logger.info(f"Courier API starting in {settings.environment} mode ({expired} stale requests expired)")

        yield

        logger.info("Courier API shutting down")

    app = FastAPI(
        title="Courier API",
        description="Role management and permission checks for the Courier newsletter platform",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(roles_router)

    @app.get("/health")
    async def health():
        return {"status": "ok", "version": __version__}

    @app.get("/whoami")
    async def whoami(ctx: AuthContext = Depends(require_auth())):
        return {"user_id": ctx.user_id, "role": ctx.role.value if ctx.role else None}

    return app


app = create_app()
