"""FastAPI application for the Billing Service."""

from fastapi import FastAPI
from libs.common.logging import configure_logging
from services.billing_service.routers.admin import router as admin_router
from services.billing_service.routers.rates import router as rates_router
from services.billing_service.routers.webhooks import router as webhooks_router


def create_app() -> FastAPI:
    """Create and configure the Billing Service FastAPI app."""
    configure_logging()

    app = FastAPI(
        title="Madrasa Billing Service",
        version="0.1.0",
        description="Stripe subscription reconciliation for the Mahad and Dugsi programs.",
    )

    @app.get("/health", tags=["system"])
    async def health_check() -> dict[str, str]:
        """Health check endpoint."""
        return {"status": "ok", "service": "billing"}

    # Stripe webhooks (no auth; signature-verified)
    app.include_router(webhooks_router)

    # Public tuition quotes
    app.include_router(rates_router)

    # Admin routes
    app.include_router(admin_router)

    return app


app = create_app()
