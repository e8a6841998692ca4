import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from .config import Settings, configure_logging
from .coordinator import TransferCoordinator
from .factory import build_store
from .scenarios.registry import STRATEGIES
from .views.transfers import build_router

logger = logging.getLogger(__name__)

TAGS = {
    "optimistic": "Optimistic Lock",
    "pessimistic": "Pessimistic Lock",
    "atomic": "Atomic Statement",
}


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or Settings.from_env()
    configure_logging(settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        store = build_store(settings)
        if settings.store_backend == "memory":
            await store.reset(settings.seed_accounts)
        app.state.settings = settings
        app.state.store = store
        # every strategy shares one store so they stay compatible when mixed
        app.state.coordinators = {
            name: TransferCoordinator(store, strategy_cls()) for name, strategy_cls in STRATEGIES.items()
        }
        logger.info("ledger started with %s store", settings.store_backend)
        try:
            yield
        finally:
            await store.close()

    app = FastAPI(
        title="Account transfer ledger - concurrency control",
        description="Two-account transfers under optimistic, pessimistic and single-statement concurrency control",
        version="1.0.0",
        lifespan=lifespan
    )

    for name in STRATEGIES:
        app.include_router(build_router(name, TAGS[name]))

    @app.get("/")
    async def root():
        return {
            "message": "Account transfer ledger - concurrency control",
            "version": "1.0.0",
            "available_methods": [
                "/optimistic - version column checked at write time",
                "/pessimistic - SELECT FOR NO KEY UPDATE in ascending id order",
                "/atomic - conditional debit and dependent credit in one statement",
            ],
            "docs": "/docs"
        }

    @app.get("/health")
    async def health_check():
        return {"status": "healthy"}

    return app
