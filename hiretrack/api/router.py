from fastapi import APIRouter

from hiretrack.api.routes import health, tracking, webhooks

api_router = APIRouter()
api_router.include_router(health.router, tags=["health"])
api_router.include_router(webhooks.router, prefix="/webhooks", tags=["webhooks"])
api_router.include_router(tracking.router, prefix="/tracking", tags=["tracking"])
