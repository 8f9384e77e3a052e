"""
app.py — FastAPI application factory and startup lifecycle.

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

from admission_engine.controllers.pass_controller import router as pass_router
from admission_engine.controllers.stay_controller import router as stay_router
from admission_engine.repository.data_repository import DataRepository
from admission_engine.services.admission_gate import AdmissionGate
from admission_engine.services.notification_service import NotificationService
from admission_engine.services.occupancy_ledger import OccupancyLedger
from admission_engine.services.reconciliation_service import ReconciliationService
from admission_engine.services.stay_admission_service import StayAdmissionService
from admission_engine.services.stay_planner import StayAdmissionPlanner
from admission_engine.utils.config import Settings, get_settings
from admission_engine.utils.locks import KeyedLockRegistry
from admission_engine.utils.logger import get_logger


logger = get_logger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    notifier: Optional[NotificationService] = None,
) -> FastAPI:
    """
    Build and wire the FastAPI application.

    Instantiates all services with explicit dependency injection via app.state.
    Stay and pass admission share one lock registry; their keys never collide.
    """
    settings = settings or get_settings()

    # --- Repository (SQLite connection factory) ---
    repository = DataRepository(settings)

    # --- Services ---
    locks = KeyedLockRegistry()
    notifier = notifier or NotificationService()
    occupancy_ledger = OccupancyLedger(repository=repository, settings=settings)
    stay_planner = StayAdmissionPlanner(
        repository=repository,
        settings=settings,
        ledger=occupancy_ledger,
    )
    stay_admission_service = StayAdmissionService(
        repository=repository,
        settings=settings,
        locks=locks,
        notifier=notifier,
    )
    admission_gate = AdmissionGate(
        repository=repository,
        settings=settings,
        locks=locks,
        notifier=notifier,
    )
    reconciliation_service = ReconciliationService(repository=repository, settings=settings)

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
    app.include_router(stay_router)
    app.include_router(pass_router)

    # --- Inject services into app.state for dependency resolution ---
    app.state.settings = settings
    app.state.repository = repository
    app.state.occupancy_ledger = occupancy_ledger
    app.state.stay_planner = stay_planner
    app.state.stay_admission_service = stay_admission_service
    app.state.admission_gate = admission_gate
    app.state.reconciliation_service = reconciliation_service

    return app


def _startup(app: FastAPI) -> None:
    """
    Idempotent startup sequence. Safe to re-run on server restarts.

    Schema (tables, indexes, overlap triggers) must exist before seeding.
    """
    settings: Settings = app.state.settings
    repository: DataRepository = app.state.repository

    logger.info("Startup: initializing database schema")
    repository.initialize_database()

    if settings.seed_demo_data:
        logger.info("Startup: seeding demo apartments and passes (skipped if not empty)")
        repository.seed_demo_data()

    logger.info("Startup complete: admission engine ready")


# Module-level app object for uvicorn
app = create_app()
