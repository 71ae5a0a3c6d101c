"""Seller router: incoming orders and inventory adjustments."""

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query
from libs.auth.dependencies import require_seller
from libs.auth.models import AuthUser
from libs.db.session import get_async_db
from services.market_service.models import OrderStatus
from services.market_service.schemas import (
    OrderListResponse,
    OrderResponse,
    StockAdjustRequest,
    StockAdjustResponse,
)
from services.market_service.services import order_queries
from services.market_service.services.inventory import adjust_stock
from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter(tags=["seller"])


@router.get("/seller/orders", response_model=OrderListResponse)
async def list_seller_orders(
    status: Optional[OrderStatus] = None,
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    current_user: AuthUser = Depends(require_seller),
    db: AsyncSession = Depends(get_async_db),
):
    """Orders placed with the caller's shop, newest first."""
    orders, total = await order_queries.list_seller_orders(
        db, current_user.user_id, status=status, limit=limit, offset=offset
    )
    return OrderListResponse(
        orders=[OrderResponse.model_validate(order) for order in orders], total=total
    )


@router.patch("/seller/variants/{variant_id}/stock", response_model=StockAdjustResponse)
async def adjust_variant_stock(
    variant_id: uuid.UUID,
    payload: StockAdjustRequest,
    current_user: AuthUser = Depends(require_seller),
    db: AsyncSession = Depends(get_async_db),
):
    """Restock (positive delta) or write off (negative delta) a variant."""
    stock = await adjust_stock(
        db,
        seller_id=current_user.user_id,
        variant_id=variant_id,
        delta=payload.delta,
    )
    return StockAdjustResponse(variant_id=variant_id, stock=stock)
