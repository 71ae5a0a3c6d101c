"""Market service routers package."""

from services.market_service.routers.admin import router as admin_router
from services.market_service.routers.cart import router as cart_router
from services.market_service.routers.orders import router as orders_router
from services.market_service.routers.payments import router as payments_router
from services.market_service.routers.seller import router as seller_router

__all__ = [
    "admin_router",
    "cart_router",
    "orders_router",
    "payments_router",
    "seller_router",
]
