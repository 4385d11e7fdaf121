"""ADSYNC — FastAPI Application Entry Point.

Multi-tenant ad metrics caching and reconciliation engine.
"""

import os
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from adsync.analyzer.orchestrator import FetchOrchestrator
from adsync.api.metrics_routes import router as metrics_router
from adsync.core.logging import get_logger
from adsync.core.tenants import TenantRegistry
from adsync.database import init_db, test_connection
from adsync.scheduler.jobs import start_scheduler, stop_scheduler

logger = get_logger("main")


IS_SERVERLESS = bool(
    os.environ.get("VERCEL") or os.environ.get("AWS_LAMBDA_FUNCTION_NAME")
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle."""
    logger.info("🚀 ADSYNC starting up...")
    logger.info(f"🌍 Environment: {'SERVERLESS' if IS_SERVERLESS else 'LOCAL'}")
    # Test connection first
    db_ok = test_connection()
    if db_ok:
        try:
            init_db()
        except Exception as e:
            logger.error(f"❌ Table creation failed: {e}")
    else:
        logger.error("❌ Database NOT connected — endpoints will fail")

    orchestrator = FetchOrchestrator(TenantRegistry.from_settings())
    app.state.orchestrator = orchestrator
    if not IS_SERVERLESS:
        start_scheduler(orchestrator)
    yield
    if not IS_SERVERLESS:
        stop_scheduler()
    await orchestrator.drain()
    logger.info("ADSYNC shut down")


app = FastAPI(
    title="ADSYNC",
    description="Tiered cache, durable summaries and funnel normalization for Meta and Google Ads metrics.",
    version="1.0.0",
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Routers
app.include_router(metrics_router)


@app.get("/health", tags=["System"])
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "service": "adsync",
        "version": "1.0.0",
    }


if __name__ == "__main__":
    uvicorn.run("adsync.main:app", host="0.0.0.0", port=8000)
