"""Read-side order queries for buyers, sellers and admins."""

import uuid
from typing import Optional, Sequence

from libs.auth.roles import UserRole, can_access_seller_features, is_admin, is_seller
from libs.common.config import get_settings
from services.market_service.errors import (
    ErrorCode,
    Forbidden,
    NotFound,
    OwnershipViolation,
    ValidationError,
)
from services.market_service.models import Order, OrderItem, OrderStatus
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

settings = get_settings()


def _with_details(query):
    return query.options(
        selectinload(Order.items).selectinload(OrderItem.product),
        selectinload(Order.items).selectinload(OrderItem.variant),
        selectinload(Order.payment),
    ).execution_options(populate_existing=True)


async def _page(
    db: AsyncSession,
    filters: list,
    *,
    status: Optional[OrderStatus],
    limit: int,
    offset: int,
) -> tuple[list[Order], int]:
    if status is not None:
        filters = [*filters, Order.status == status]

    total = await db.scalar(select(func.count(Order.id)).where(*filters))
    result = await db.execute(
        _with_details(
            select(Order)
            .where(*filters)
            .order_by(Order.created_at.desc(), Order.id)
            .limit(limit)
            .offset(offset)
        )
    )
    return list(result.scalars().all()), total or 0


async def list_buyer_orders(
    db: AsyncSession,
    buyer_id: str,
    *,
    status: Optional[OrderStatus] = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[Order], int]:
    return await _page(
        db, [Order.buyer_id == buyer_id], status=status, limit=limit, offset=offset
    )


async def list_seller_orders(
    db: AsyncSession,
    seller_id: str,
    *,
    status: Optional[OrderStatus] = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[Order], int]:
    return await _page(
        db, [Order.seller_id == seller_id], status=status, limit=limit, offset=offset
    )


async def list_all_orders(
    db: AsyncSession,
    *,
    status: Optional[OrderStatus] = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[Order], int]:
    return await _page(db, [], status=status, limit=limit, offset=offset)


async def get_order_for_actor(
    db: AsyncSession, *, order_id: uuid.UUID, actor_id: str, actor_role: UserRole
) -> Order:
    """Buyers see their purchases, sellers their sales, admins everything."""
    result = await db.execute(_with_details(select(Order).where(Order.id == order_id)))
    order = result.scalar_one_or_none()
    if order is None:
        raise NotFound("Order not found", code=ErrorCode.ORDER_NOT_FOUND)

    if is_admin(actor_role):
        return order
    if is_seller(actor_role):
        if order.seller_id != actor_id:
            raise OwnershipViolation("Order does not belong to your shop")
    elif order.buyer_id != actor_id:
        raise OwnershipViolation("Order does not belong to you")
    return order


async def get_orders_by_ids(
    db: AsyncSession,
    *,
    buyer_id: str,
    buyer_role: UserRole,
    order_ids: Sequence[uuid.UUID],
) -> list[Order]:
    """Fetch a checkout's orders in request order; all must belong to the buyer."""
    if can_access_seller_features(buyer_role):
        raise Forbidden("Sellers cannot access buyer orders via this endpoint")
    if not order_ids or len(order_ids) > settings.BY_IDS_MAX_ORDERS:
        raise ValidationError(
            f"ids must contain 1-{settings.BY_IDS_MAX_ORDERS} items"
        )

    result = await db.execute(
        _with_details(
            select(Order).where(Order.id.in_(order_ids), Order.buyer_id == buyer_id)
        )
    )
    by_id = {order.id: order for order in result.scalars().all()}
    if any(order_id not in by_id for order_id in order_ids):
        raise NotFound("Order not found", code=ErrorCode.ORDER_NOT_FOUND)
    return [by_id[order_id] for order_id in order_ids]
