"""Market Service models package."""

from services.market_service.models.catalog import Product, ProductVariant, SellerProfile
from services.market_service.models.commerce import (
    Address,
    CartItem,
    Order,
    OrderAuditLog,
    OrderItem,
    Payment,
)
from services.market_service.models.enums import OrderStatus, PaymentStatus

__all__ = [
    "Address",
    "CartItem",
    "Order",
    "OrderAuditLog",
    "OrderItem",
    "OrderStatus",
    "Payment",
    "PaymentStatus",
    "Product",
    "ProductVariant",
    "SellerProfile",
]
