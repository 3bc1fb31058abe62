"""Billing service routers."""

from services.billing_service.routers.admin import router as admin_router
from services.billing_service.routers.rates import router as rates_router
from services.billing_service.routers.webhooks import router as webhooks_router

__all__ = [
    "admin_router",
    "rates_router",
    "webhooks_router",
]
