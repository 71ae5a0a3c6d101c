"""Market orders router: order creation, buyer order views and status changes."""

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query
from libs.auth.dependencies import get_current_user
from libs.auth.models import AuthUser
from libs.db.session import get_async_db
from services.market_service.models import OrderStatus
from services.market_service.schemas import (
    CreateOrdersRequest,
    CreateOrdersResponse,
    DirectOrderRequest,
    OrderListResponse,
    OrderResponse,
    OrdersByIdsRequest,
    TransitionResponse,
    UpdateAddressRequest,
    UpdateStatusRequest,
)
from services.market_service.services import order_queries
from services.market_service.services.order_builder import (
    OrderLine,
    create_direct_order,
    create_orders,
    update_shipping_address,
)
from services.market_service.services.transitions import transition_order
from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter(tags=["orders"])


# ============================================================================
# CREATION
# ============================================================================


@router.post("/orders", response_model=CreateOrdersResponse, status_code=201)
async def create_orders_endpoint(
    payload: CreateOrdersRequest,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    """Create one PENDING order per seller from explicit lines."""
    orders = await create_orders(
        db,
        buyer_id=current_user.user_id,
        buyer_role=current_user.role,
        lines=[
            OrderLine(
                product_id=line.product_id,
                variant_id=line.variant_id,
                quantity=line.quantity,
            )
            for line in payload.items
        ],
        address_id=payload.address_id,
    )
    return CreateOrdersResponse(
        order_ids=[order.id for order in orders],
        orders=[OrderResponse.model_validate(order) for order in orders],
    )


@router.post("/orders/direct", response_model=CreateOrdersResponse, status_code=201)
async def create_direct_order_endpoint(
    payload: DirectOrderRequest,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    """Buy now: one variant, one order, no cart involved."""
    order = await create_direct_order(
        db,
        buyer_id=current_user.user_id,
        buyer_role=current_user.role,
        variant_id=payload.variant_id,
        quantity=payload.quantity,
        address_id=payload.address_id,
    )
    return CreateOrdersResponse(
        order_ids=[order.id], orders=[OrderResponse.model_validate(order)]
    )


# ============================================================================
# READS
# ============================================================================


@router.get("/orders", response_model=OrderListResponse)
async def list_my_orders(
    status: Optional[OrderStatus] = None,
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    """List the caller's purchases, newest first."""
    orders, total = await order_queries.list_buyer_orders(
        db, current_user.user_id, status=status, limit=limit, offset=offset
    )
    return OrderListResponse(
        orders=[OrderResponse.model_validate(order) for order in orders], total=total
    )


@router.post("/orders/by-ids", response_model=list[OrderResponse])
async def get_orders_by_ids(
    payload: OrdersByIdsRequest,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    """Fetch the orders of one checkout, in the order requested."""
    return await order_queries.get_orders_by_ids(
        db,
        buyer_id=current_user.user_id,
        buyer_role=current_user.role,
        order_ids=payload.ids,
    )


@router.get("/orders/{order_id}", response_model=OrderResponse)
async def get_order(
    order_id: uuid.UUID,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    return await order_queries.get_order_for_actor(
        db,
        order_id=order_id,
        actor_id=current_user.user_id,
        actor_role=current_user.role,
    )


# ============================================================================
# CHANGES
# ============================================================================


@router.patch("/orders/{order_id}/address", response_model=OrderResponse)
async def update_order_address(
    order_id: uuid.UUID,
    payload: UpdateAddressRequest,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    """Snapshot one of the buyer's addresses into a PENDING order."""
    return await update_shipping_address(
        db,
        buyer_id=current_user.user_id,
        order_id=order_id,
        address_id=payload.address_id,
    )


@router.patch("/orders/{order_id}/status", response_model=TransitionResponse)
async def update_order_status(
    order_id: uuid.UUID,
    payload: UpdateStatusRequest,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    """Buyer or seller status change through the transition gate."""
    result = await transition_order(
        db,
        actor_id=current_user.user_id,
        actor_role=current_user.role,
        order_id=order_id,
        to_status=payload.to,
    )
    return TransitionResponse(
        changed=result.changed,
        order=OrderResponse.model_validate(result.order),
        warnings=result.warnings,
    )
