"""Inventory ledger: the only code allowed to change ``ProductVariant.stock``.

Both primitives are single conditional UPDATE statements checked by affected
row count, so concurrent writers can never drive stock negative. Neither
primitive commits; the caller owns the transaction.
"""

import uuid
from typing import Optional

from libs.common.datetime_utils import utc_now
from libs.common.logging import get_logger
from services.market_service.errors import (
    ErrorCode,
    NotFound,
    OutOfStock,
    OwnershipViolation,
    ValidationError,
)
from services.market_service.models import Product, ProductVariant
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)


def _require_positive(quantity: int) -> None:
    if quantity <= 0:
        raise ValidationError(f"Stock quantity must be positive, got {quantity}")


async def try_decrement(
    db: AsyncSession, variant_id: uuid.UUID, quantity: int
) -> bool:
    """Subtract ``quantity`` iff current stock >= quantity. Returns whether it applied."""
    _require_positive(quantity)
    result = await db.execute(
        update(ProductVariant)
        .where(ProductVariant.id == variant_id, ProductVariant.stock >= quantity)
        .values(stock=ProductVariant.stock - quantity, updated_at=utc_now())
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def increment(db: AsyncSession, variant_id: uuid.UUID, quantity: int) -> bool:
    """Add ``quantity`` unconditionally. Returns False only if the variant is gone."""
    _require_positive(quantity)
    result = await db.execute(
        update(ProductVariant)
        .where(ProductVariant.id == variant_id)
        .values(stock=ProductVariant.stock + quantity, updated_at=utc_now())
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def get_stock(db: AsyncSession, variant_id: uuid.UUID) -> Optional[int]:
    result = await db.execute(
        select(ProductVariant.stock).where(ProductVariant.id == variant_id)
    )
    return result.scalar_one_or_none()


async def adjust_stock(
    db: AsyncSession,
    *,
    seller_id: str,
    variant_id: uuid.UUID,
    delta: int,
) -> int:
    """Seller restock (delta > 0) or write-off (delta < 0) of their own variant.

    Returns the stock level after the adjustment and commits.
    """
    if delta == 0:
        raise ValidationError("delta must be a non-zero integer")

    result = await db.execute(
        select(Product.seller_id)
        .join(ProductVariant, ProductVariant.product_id == Product.id)
        .where(ProductVariant.id == variant_id)
    )
    owner_id = result.scalar_one_or_none()
    if owner_id is None:
        raise NotFound("Variant not found", code=ErrorCode.VARIANT_NOT_FOUND)
    if owner_id != seller_id:
        raise OwnershipViolation("Variant does not belong to your shop")

    if delta > 0:
        await increment(db, variant_id, delta)
    elif not await try_decrement(db, variant_id, -delta):
        await db.rollback()
        raise OutOfStock(
            f"Cannot remove {-delta} units; not enough stock",
            details={"variant_id": str(variant_id)},
        )

    new_stock = await get_stock(db, variant_id)
    await db.commit()

    logger.info(
        "Seller %s adjusted stock of variant %s by %+d (now %s)",
        seller_id,
        variant_id,
        delta,
        new_stock,
    )
    return new_stock
