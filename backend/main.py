"""Convergence signal FastAPI application."""
from __future__ import annotations

import asyncio
import logging
import os
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from backend.cache import CacheLayer
from backend.config import ALLOWED_ORIGINS, CACHE_TTL_SECONDS, SCHEDULER_TICK_SECONDS
from backend.dependencies import require_api_key
from backend.routers import health, signals, wallets
from convergence.config import EngineConfig
from convergence.datastore import DataStore
from convergence.engine import ConvergenceEngine
from convergence.hl_client import HyperliquidAPIError, HyperliquidClient
from convergence.logging_setup import configure_logging
from convergence.price_feed import HyperliquidPriceFeed
from convergence.scheduler import TaskScheduler, build_default_tasks

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Open the store and, outside tests, run the task scheduler in the background."""
    # --- startup ---
    configure_logging()
    config = EngineConfig()
    config.validate_required()
    app.state.config = config

    datastore = DataStore(config.DB_PATH)
    app.state.datastore = datastore
    app.state.cache = CacheLayer(ttl=CACHE_TTL_SECONDS)

    engine = None
    if os.getenv("TESTING") != "1":
        engine = ConvergenceEngine(
            datastore,
            HyperliquidClient(
                info_url=config.HL_INFO_URL,
                leaderboard_url=config.HL_LEADERBOARD_URL,
                timeout=config.HTTP_TIMEOUT,
            ),
            HyperliquidPriceFeed(
                url=config.HL_INFO_URL,
                stale_after=config.PRICE_STALE_SECONDS,
                timeout=config.HTTP_TIMEOUT,
            ),
            config,
        )
        scheduler = TaskScheduler(datastore, build_default_tasks(engine, config))
        scheduler.recover_state()
        app.state.scheduler = scheduler
        app.state.scheduler_task = asyncio.create_task(
            scheduler.run(tick_interval_s=SCHEDULER_TICK_SECONDS)
        )

    logger.info("Convergence API ready (db=%s)", config.DB_PATH)
    yield

    # --- shutdown ---
    logger.info("Shutting down convergence API...")
    if hasattr(app.state, "scheduler_task"):
        app.state.scheduler.request_shutdown()
        try:
            await asyncio.wait_for(app.state.scheduler_task, timeout=30)
        except asyncio.TimeoutError:
            app.state.scheduler_task.cancel()
            try:
                await app.state.scheduler_task
            except asyncio.CancelledError:
                pass
    if engine is not None:
        await engine.close()
    datastore.close()
    logger.info("Convergence API stopped.")


app = FastAPI(
    title="Convergence Signal API",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET"],
    allow_headers=["*"],
)

app.include_router(health.router)
app.include_router(signals.router, dependencies=[Depends(require_api_key)])
app.include_router(wallets.router, dependencies=[Depends(require_api_key)])


@app.exception_handler(HyperliquidAPIError)
async def upstream_error_handler(request: Request, exc: HyperliquidAPIError):
    return JSONResponse(
        status_code=502,
        content={"detail": f"Upstream API error: {exc.detail}"},
    )


@app.get("/")
def root() -> dict[str, str]:
    """Root endpoint."""
    return {"name": "Convergence Signal API", "version": "0.1.0"}
