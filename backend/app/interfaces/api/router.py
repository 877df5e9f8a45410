from fastapi import APIRouter

from app.interfaces.api.billing import router as billing_router
from app.interfaces.api.checkout import router as checkout_router
from app.interfaces.api.health import router as health_router
from app.interfaces.api.stripe_webhooks import router as stripe_webhooks_router

api_router = APIRouter()
api_router.include_router(health_router, tags=["health"])
api_router.include_router(stripe_webhooks_router)
api_router.include_router(checkout_router)
api_router.include_router(billing_router)
