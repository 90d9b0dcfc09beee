"""
Paymaster Ledger - read API

Application entry point.

The ledger is a projection of paymaster contract events. This service
only reads it; the event stream is applied by the replay tooling
(tools/manage.py) or an embedding indexer through EventRouter.
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .api import router
from .db import EntityStore, create_entity_store
from .observability import (
    RequestContextMiddleware,
    check_health,
    get_logger,
    get_metrics,
    setup_logging,
)


# Setup logging at import time
setup_logging()
logger = get_logger(__name__)


def create_app(entity_store: Optional[EntityStore] = None) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        entity_store: Store to serve. If None, one is created from the
                      environment at startup (see db.config).
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        store = entity_store if entity_store is not None else create_entity_store()
        app.state.entity_store = store

        logger.info(
            "Application startup complete",
            store_type=type(store).__name__,
        )

        yield

        if hasattr(store, "close"):
            store.close()
            logger.info("Database connection closed")

        logger.info("Application shutdown complete")

    app = FastAPI(
        title="Paymaster Ledger",
        description="""
## Paymaster Ledger

Read-side projection of paymaster contract events: accounts, pools,
members, nullifier state, financial totals and daily statistics.

Every entity is addressed by its composite key
(`network-address`, `network-address-poolId`, ...).
No write endpoints exist; the event stream is the only writer.
        """,
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    app.add_middleware(RequestContextMiddleware)
    app.include_router(router, prefix="/api/v1")

    @app.get("/health", tags=["System"])
    async def health(request: Request):
        """
        Health check with store connectivity.

        Returns 200 if healthy, 503 if unhealthy.
        """
        status = check_health(entity_store=request.app.state.entity_store)
        return JSONResponse(
            status_code=200 if status.healthy else 503,
            content={
                "status": "healthy" if status.healthy else "unhealthy",
                "checks": status.checks,
                "duration_ms": status.duration_ms,
            },
        )

    @app.get("/metrics", tags=["System"])
    async def metrics():
        """Processing counters and latency percentiles."""
        return get_metrics().get_summary()

    return app


# Run with: uvicorn paymaster_ledger.main:app --port 8000
app = create_app()
