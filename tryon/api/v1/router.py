"""Aggregate all v1 API routers."""

from fastapi import APIRouter
from tryon.api.v1.health import router as health_router
from tryon.api.v1.jobs import router as jobs_router
from tryon.api.v1.history import router as history_router
from tryon.api.v1.predictions import router as predictions_router

fashn_router = APIRouter(prefix="/fashn")
fashn_router.include_router(jobs_router, tags=["jobs"])
fashn_router.include_router(predictions_router, tags=["tryon"])
fashn_router.include_router(history_router, tags=["history"])

v1_router = APIRouter(prefix="/api/v1")
v1_router.include_router(health_router, tags=["health"])
v1_router.include_router(fashn_router)
