"""Append-only record of admin status overrides."""

import uuid

from services.market_service.models import OrderAuditLog, OrderStatus
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession


def record_override(
    db: AsyncSession,
    *,
    order_id: uuid.UUID,
    admin_id: str,
    from_status: OrderStatus,
    to_status: OrderStatus,
    reason: str,
) -> OrderAuditLog:
    """Stage an audit row in the caller's transaction."""
    audit_log = OrderAuditLog(
        order_id=order_id,
        admin_id=admin_id,
        from_status=from_status,
        to_status=to_status,
        reason=reason,
    )
    db.add(audit_log)
    return audit_log


async def list_audit_logs(
    db: AsyncSession, order_id: uuid.UUID
) -> list[OrderAuditLog]:
    result = await db.execute(
        select(OrderAuditLog)
        .where(OrderAuditLog.order_id == order_id)
        .order_by(OrderAuditLog.created_at, OrderAuditLog.id)
    )
    return list(result.scalars().all())
