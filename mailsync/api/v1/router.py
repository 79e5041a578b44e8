"""API v1 router aggregation."""

from fastapi import APIRouter

from mailsync.api.v1.endpoints import health, monitoring, sync, webhooks

api_router = APIRouter()

api_router.include_router(health.router, prefix="/health", tags=["health"])
api_router.include_router(sync.router, prefix="/accounts", tags=["sync"])
api_router.include_router(webhooks.router, tags=["webhooks"])
api_router.include_router(monitoring.router, prefix="/monitoring", tags=["monitoring"])
