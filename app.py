"""
app.py: FastAPI application factory and startup lifecycle.

This is the ASGI application object imported by uvicorn.
It wires all services, registers routers, and runs startup initialization.

Usage (via launcher):
    python main.py

Usage (direct uvicorn):
    uvicorn app:app --reload
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from inventory_backend.controllers.auth_controller import router as auth_router
from inventory_backend.controllers.buckets_controller import router as buckets_router
from inventory_backend.controllers.contracts_controller import router as contracts_router
from inventory_backend.controllers.pools_controller import router as pools_router
from inventory_backend.controllers.rate_plans_controller import router as rate_plans_router
from inventory_backend.repository.data_repository import DataRepository
from inventory_backend.services.attrition_service import AttritionService
from inventory_backend.services.auth_service import AuthService
from inventory_backend.services.generation_service import AllocationGenerationService
from inventory_backend.services.pool_service import PoolService
from inventory_backend.services.utilization_service import UtilizationService
from inventory_backend.services.weighting_service import PoolAllocationService
from inventory_backend.utils.config import Settings, get_settings
from inventory_backend.utils.logger import configure_logging, get_logger


logger = get_logger(__name__)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Build and wire the FastAPI application.

    Instantiates all services with explicit dependency injection via app.state.
    Every service shares one repository, so pool locks and storage agree.
    """
    settings = settings or get_settings()
    configure_logging(settings.log_level)

    # --- Repository (SQLite connection factory) ---
    repository = DataRepository(settings)

    # --- Services (business logic, no direct DB access) ---
    pool_service = PoolService(repository=repository, settings=settings)
    allocation_service = PoolAllocationService(repository=repository, settings=settings)
    generation_service = AllocationGenerationService(repository=repository, settings=settings)
    utilization_service = UtilizationService(repository=repository, settings=settings)
    attrition_service = AttritionService(repository=repository, settings=settings)
    auth_service = AuthService(settings=settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Run startup initialization before accepting requests."""
        _startup(app)
        yield

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        lifespan=lifespan,
    )

    # --- Routers ---
    app.include_router(auth_router)
    app.include_router(pools_router)
    app.include_router(rate_plans_router)
    app.include_router(buckets_router)
    app.include_router(contracts_router)

    # --- Inject services into app.state for dependency resolution ---
    app.state.settings = settings
    app.state.repository = repository
    app.state.pool_service = pool_service
    app.state.allocation_service = allocation_service
    app.state.generation_service = generation_service
    app.state.utilization_service = utilization_service
    app.state.attrition_service = attrition_service
    app.state.auth_service = auth_service

    return app


def _startup(app: FastAPI) -> None:
    """
    Idempotent startup sequence. Safe to re-run on server restarts.

    Schema must exist before demo data is seeded; seeding is skipped
    when the default organization already owns pools.
    """
    settings: Settings = app.state.settings
    repository: DataRepository = app.state.repository

    logger.info("Startup: initializing database schema")
    repository.initialize_database()

    if settings.seed_demo_data:
        logger.info("Startup: seeding demo pool (skipped if pools exist)")
        repository.seed_demo_data_if_empty(settings.default_organization_id)

    logger.info("Startup complete | database=%s", repository.database_path)


# Module-level app object for uvicorn
app = create_app()
