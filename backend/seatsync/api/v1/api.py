"""API routes for the FastAPI application."""

from seatsync.api.router import TrailingSlashRouter
from seatsync.api.v1.endpoints import billing, cron, health, webhooks

api_router = TrailingSlashRouter()
api_router.include_router(health.router, prefix="/health", tags=["health"])
api_router.include_router(billing.router, prefix="/billing", tags=["billing"])
api_router.include_router(webhooks.router, prefix="/webhooks", tags=["webhooks"])
api_router.include_router(cron.router, prefix="/cron", tags=["cron"], include_in_schema=False)
