"""FastAPI application entry point.

Configures CORS, structured logging, lifespan events (including APScheduler),
and router registration.
"""

import logging
from contextlib import asynccontextmanager
from collections.abc import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from certengine.core.config import settings
from certengine.core.logging import setup_logging
from certengine.routers import certificates, evaluators, health, processes, sweeps
from certengine.scheduler.jobs import shutdown_scheduler, start_scheduler

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(application: FastAPI) -> AsyncIterator[None]:
    """Application lifespan: starts APScheduler on startup, stops it on exit."""
    setup_logging()
    logger.info("Application starting up")
    if settings.SCHEDULER_ENABLED:
        start_scheduler()
    else:
        logger.info("scheduler_disabled")
    yield
    shutdown_scheduler()
    logger.info("Application shutting down")


app = FastAPI(
    title="Certification Lifecycle Engine",
    description="Competency certification workflow: processes, evaluator assignment, reminders and certificate expiry",
    version="0.1.0",
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# CORS Configuration
# ---------------------------------------------------------------------------
_raw_origins = settings.ALLOWED_ORIGINS.strip()
if _raw_origins == "*":
    _allowed_origins: list[str] = ["*"]
else:
    _allowed_origins = [o.strip() for o in _raw_origins.split(",") if o.strip()]

app.add_middleware(
    CORSMiddleware,
    allow_origins=_allowed_origins,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ---------------------------------------------------------------------------
# Router Registration
# ---------------------------------------------------------------------------
app.include_router(health.router, tags=["Health"])
app.include_router(processes.router, prefix="/api/v1/processes", tags=["Processes"])
app.include_router(evaluators.router, prefix="/api/v1/evaluators", tags=["Evaluators"])
app.include_router(certificates.router, prefix="/api/v1/certificates", tags=["Certificates"])
app.include_router(sweeps.router, prefix="/api/v1/sweeps", tags=["Sweeps"])
