"""API Routes."""

from fastapi import APIRouter

from .account import router as account_router
from .billing import router as billing_router
from .health import router as health_router
from .team import router as team_router
from .webhooks import router as webhooks_router

# Create main API router
api_router = APIRouter()

# Include route modules
api_router.include_router(health_router, tags=["Health"])
api_router.include_router(webhooks_router)
api_router.include_router(team_router)
api_router.include_router(account_router)
api_router.include_router(billing_router)
