"""Persistent buyer cart.

The cart never reserves stock; it only feeds lines to the order builder.
Items are removed by the confirmation engine once their order is PAID.
"""

import uuid
from typing import Optional

from libs.auth.roles import UserRole, can_create_orders
from libs.common.logging import get_logger
from services.market_service.errors import (
    ErrorCode,
    Forbidden,
    NotFound,
    OutOfStock,
    OwnershipViolation,
    ProductUnavailable,
    ValidationError,
)
from services.market_service.models import CartItem, Order, ProductVariant
from services.market_service.services.order_builder import OrderLine, create_orders
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

logger = get_logger(__name__)


async def list_cart(db: AsyncSession, user_id: str) -> list[CartItem]:
    result = await db.execute(
        select(CartItem)
        .where(CartItem.user_id == user_id)
        .options(selectinload(CartItem.variant).selectinload(ProductVariant.product))
        .order_by(CartItem.created_at, CartItem.id)
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def add_to_cart(
    db: AsyncSession,
    *,
    user_id: str,
    user_role: UserRole,
    variant_id: uuid.UUID,
    quantity: int,
) -> CartItem:
    """Add a variant or grow the existing line, bounded by current stock."""
    if not can_create_orders(user_role):
        raise Forbidden("Sellers cannot use the cart")
    if quantity < 1:
        raise ValidationError("Quantity must be at least 1")

    result = await db.execute(
        select(ProductVariant)
        .where(ProductVariant.id == variant_id)
        .options(selectinload(ProductVariant.product))
        .execution_options(populate_existing=True)
    )
    variant = result.scalar_one_or_none()
    if variant is None:
        raise NotFound("Variant not found", code=ErrorCode.VARIANT_NOT_FOUND)
    if not variant.product.is_purchasable:
        raise ProductUnavailable(
            f"Product is not available: {variant.product.title}",
            details={"product_id": str(variant.product_id)},
        )

    result = await db.execute(
        select(CartItem).where(
            CartItem.user_id == user_id, CartItem.variant_id == variant_id
        )
    )
    item = result.scalar_one_or_none()
    new_quantity = quantity + (item.quantity if item else 0)
    if new_quantity > variant.stock:
        raise OutOfStock(
            f"Requested {new_quantity}, available {variant.stock}",
            details={
                "variant_id": str(variant_id),
                "requested": new_quantity,
                "available": variant.stock,
            },
        )

    if item is None:
        item = CartItem(user_id=user_id, variant_id=variant_id, quantity=quantity)
        db.add(item)
    else:
        item.quantity = new_quantity
    await db.commit()

    logger.info("Cart %s: variant %s -> qty %d", user_id, variant_id, new_quantity)
    result = await db.execute(
        select(CartItem)
        .where(CartItem.id == item.id)
        .options(selectinload(CartItem.variant).selectinload(ProductVariant.product))
        .execution_options(populate_existing=True)
    )
    return result.scalar_one()


async def remove_cart_item(db: AsyncSession, *, user_id: str, item_id: uuid.UUID) -> None:
    item = await db.get(CartItem, item_id)
    if item is None:
        raise NotFound("Cart item not found")
    if item.user_id != user_id:
        raise OwnershipViolation("Cart item does not belong to you")
    await db.delete(item)
    await db.commit()


async def clear_cart(db: AsyncSession, user_id: str) -> int:
    result = await db.execute(delete(CartItem).where(CartItem.user_id == user_id))
    await db.commit()
    return result.rowcount


async def checkout_cart(
    db: AsyncSession,
    *,
    buyer_id: str,
    buyer_role: UserRole,
    address_id: Optional[uuid.UUID] = None,
) -> list[Order]:
    """Turn the whole cart into per-seller PENDING orders."""
    items = await list_cart(db, buyer_id)
    if not items:
        raise ValidationError("Cart is empty")

    lines = [
        OrderLine(
            product_id=item.variant.product_id,
            variant_id=item.variant_id,
            quantity=item.quantity,
        )
        for item in items
    ]
    return await create_orders(
        db,
        buyer_id=buyer_id,
        buyer_role=buyer_role,
        lines=lines,
        address_id=address_id,
    )
