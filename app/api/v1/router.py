"""Aggregate all v1 API routers."""

from fastapi import APIRouter
from app.api.v1.health import router as health_router
from app.api.v1.audit_queue import API_PREFIX, router as audit_queue_router

v1_router = APIRouter(prefix=API_PREFIX)
v1_router.include_router(health_router, tags=["health"])
v1_router.include_router(audit_queue_router, tags=["audit-queue"])
