"""Admin router: order oversight, status overrides and audit history."""

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query
from libs.auth.dependencies import require_admin
from libs.auth.models import AuthUser
from libs.db.session import get_async_db
from services.market_service.models import OrderStatus
from services.market_service.schemas import (
    AuditLogResponse,
    OrderListResponse,
    OrderResponse,
    OverrideRequest,
    TransitionResponse,
)
from services.market_service.services import audit, order_queries
from services.market_service.services.order_state import transition_table
from services.market_service.services.transitions import admin_override
from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter(tags=["admin"])


@router.get("/admin/orders", response_model=OrderListResponse)
async def list_all_orders(
    status: Optional[OrderStatus] = None,
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    _admin: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
):
    orders, total = await order_queries.list_all_orders(
        db, status=status, limit=limit, offset=offset
    )
    return OrderListResponse(
        orders=[OrderResponse.model_validate(order) for order in orders], total=total
    )


@router.get("/admin/orders/transitions", response_model=dict[str, list[str]])
async def get_transition_table(_admin: AuthUser = Depends(require_admin)):
    """The full order state machine, for dispute tooling."""
    return transition_table()


@router.post("/admin/orders/{order_id}/override", response_model=TransitionResponse)
async def override_order_status(
    order_id: uuid.UUID,
    payload: OverrideRequest,
    current_user: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
):
    """Move an order to any status. A reason is mandatory and audited."""
    result = await admin_override(
        db,
        admin_id=current_user.user_id,
        admin_role=current_user.role,
        order_id=order_id,
        to_status=payload.to,
        reason=payload.reason,
    )
    return TransitionResponse(
        changed=result.changed,
        order=OrderResponse.model_validate(result.order),
        warnings=result.warnings,
    )


@router.get("/admin/orders/{order_id}/audit-logs", response_model=list[AuditLogResponse])
async def list_order_audit_logs(
    order_id: uuid.UUID,
    _admin: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
):
    return await audit.list_audit_logs(db, order_id)
