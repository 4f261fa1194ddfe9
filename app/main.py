"""Audit Queue Service - FastAPI application."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.config import settings
from app.api.v1.router import v1_router
from app.api.v1.health import router as health_root_router
from app.api.v1 import audit_queue as audit_queue_api
from app.api.v1 import health as health_api
from app.audit.executor import AuditExecutor
from app.audit.http_executor import HttpAuditExecutor
from app.jobs.in_process_queue import AuditQueue

logger = logging.getLogger(__name__)


def build_executor() -> AuditExecutor:
    """Executor used for every queued audit."""
    return HttpAuditExecutor(
        timeout=settings.fetch_timeout_seconds,
        user_agent=settings.fetch_user_agent,
    )


# Global dispatcher reference
_dispatcher = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown logic."""
    global _dispatcher

    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logger.info("Starting Audit Queue Service on port %d", settings.service_port)
    logger.info(
        "Queue: max concurrent %d, job timeout %gs, max attempts %d",
        settings.queue_max_concurrent,
        settings.queue_job_timeout_seconds,
        settings.queue_max_attempts,
    )

    # Start job dispatcher
    _dispatcher = AuditQueue.from_settings(build_executor(), settings)
    await _dispatcher.start()

    # Wire dispatcher into API endpoints
    audit_queue_api.set_dispatcher(_dispatcher)
    health_api.set_dispatcher(_dispatcher)

    yield

    # Shutdown
    logger.info("Shutting down Audit Queue Service")
    audit_queue_api.set_dispatcher(None)
    health_api.set_dispatcher(None)
    await _dispatcher.stop()
    _dispatcher = None


app = FastAPI(
    title="Audit Queue Service",
    description="Queued website audits with priorities, deduplication and retries",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS: configured origins
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Mount routers
app.include_router(health_root_router, tags=["health"])  # GET /health at root
app.include_router(v1_router)  # All /api/v1/* endpoints
