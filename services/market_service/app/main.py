"""FastAPI application for the Market Service."""

from fastapi import FastAPI
from libs.common.error_handler import add_exception_handlers
from libs.common.middleware import add_observability_middleware
from services.market_service.errors import MarketError
from services.market_service.routers import (
    admin_router,
    cart_router,
    orders_router,
    payments_router,
    seller_router,
)


def create_app() -> FastAPI:
    """Create and configure the Market Service FastAPI app."""
    app = FastAPI(
        title="Market Service",
        version="0.1.0",
        description="Multi-seller marketplace: orders, payment confirmation and inventory.",
    )
    add_observability_middleware(app)
    add_exception_handlers(app, domain_error=MarketError)

    @app.get("/health", tags=["system"])
    async def health_check() -> dict[str, str]:
        """Health check endpoint."""
        return {"status": "ok", "service": "market"}

    # Buyer routes
    app.include_router(orders_router)
    app.include_router(payments_router)
    app.include_router(cart_router)

    # Seller and admin routes
    app.include_router(seller_router)
    app.include_router(admin_router)

    return app


app = create_app()
