"""Transition authority gate and admin override.

Legality lives in ``order_state``; this module layers who may drive which
move, ownership, optimistic concurrency and the refund stock side effect.
"""

import uuid
from dataclasses import dataclass, field

from libs.auth.roles import UserRole, is_admin, is_seller
from libs.common.config import get_settings
from libs.common.datetime_utils import utc_now
from libs.common.logging import get_logger
from services.market_service.errors import (
    Conflict,
    ErrorCode,
    Forbidden,
    NotFound,
    OwnershipViolation,
    RoleNotPermitted,
    ValidationError,
)
from services.market_service.models import Order, OrderStatus
from services.market_service.services import audit
from services.market_service.services.inventory import increment
from services.market_service.services.order_builder import load_orders
from services.market_service.services.order_state import assert_transition
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

logger = get_logger(__name__)
settings = get_settings()

CUSTOMER_TRANSITIONS = frozenset(
    {
        (OrderStatus.PENDING, OrderStatus.CANCELLED),
        (OrderStatus.PAID, OrderStatus.REFUND_REQUESTED),
        (OrderStatus.SHIPPED, OrderStatus.REFUND_REQUESTED),
    }
)

SELLER_TRANSITIONS = frozenset(
    {
        (OrderStatus.PAID, OrderStatus.SHIPPED),
        (OrderStatus.SHIPPED, OrderStatus.COMPLETED),
        (OrderStatus.REFUND_REQUESTED, OrderStatus.REFUNDED),
    }
)

# Statuses reached only after payment confirmation took the stock
STOCK_HOLDING_STATUSES = frozenset(
    {
        OrderStatus.PAID,
        OrderStatus.SHIPPED,
        OrderStatus.COMPLETED,
        OrderStatus.REFUND_REQUESTED,
    }
)


@dataclass
class TransitionResult:
    order: Order
    changed: bool
    warnings: list[str] = field(default_factory=list)


# ============================================================================
# HELPERS
# ============================================================================


async def _load_order(db: AsyncSession, order_id: uuid.UUID) -> Order:
    result = await db.execute(
        select(Order)
        .where(Order.id == order_id)
        .options(selectinload(Order.items), selectinload(Order.payment))
        .execution_options(populate_existing=True)
    )
    order = result.scalar_one_or_none()
    if order is None:
        raise NotFound("Order not found", code=ErrorCode.ORDER_NOT_FOUND)
    return order


async def _swap_status(
    db: AsyncSession,
    order_id: uuid.UUID,
    from_status: OrderStatus,
    to_status: OrderStatus,
) -> None:
    """Compare-and-swap the status; a concurrent writer turns into Conflict."""
    now = utc_now()
    values = {"status": to_status, "updated_at": now}
    if to_status == OrderStatus.CANCELLED:
        values["cancelled_at"] = now
    result = await db.execute(
        update(Order)
        .where(Order.id == order_id, Order.status == from_status)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise Conflict(
            "Order status changed concurrently, reload and retry",
            details={"expected": from_status.value},
        )


async def restore_stock(db: AsyncSession, order: Order) -> list[str]:
    """Put every item's quantity back on its variant.

    Items without a live variant are skipped and reported as warnings.
    """
    warnings: list[str] = []
    for item in order.items:
        if item.variant_id is None:
            warnings.append(f"Item {item.id}: no variant linked, stock not restored")
            continue
        if not await increment(db, item.variant_id, item.quantity):
            warnings.append(
                f"Item {item.id}: variant {item.variant_id} not found, stock not restored"
            )
    for warning in warnings:
        logger.warning("Order %s refund: %s", order.order_number, warning)
    return warnings


def _check_ownership(order: Order, actor_id: str, actor_role: UserRole) -> None:
    if is_seller(actor_role):
        if order.seller_id != actor_id:
            raise OwnershipViolation("Order does not belong to your shop")
    elif order.buyer_id != actor_id:
        raise OwnershipViolation("Order does not belong to you")


def _check_role(
    actor_role: UserRole, from_status: OrderStatus, to_status: OrderStatus
) -> None:
    allowed = SELLER_TRANSITIONS if is_seller(actor_role) else CUSTOMER_TRANSITIONS
    if (from_status, to_status) not in allowed:
        raise RoleNotPermitted(
            f"{actor_role.value} cannot transition {from_status.value} -> {to_status.value}"
        )


# ============================================================================
# OPERATIONS
# ============================================================================


async def transition_order(
    db: AsyncSession,
    *,
    actor_id: str,
    actor_role: UserRole,
    order_id: uuid.UUID,
    to_status: OrderStatus,
) -> TransitionResult:
    """Drive a normal buyer/seller status change.

    Checks run in a fixed order: admin rejection, ownership, idempotence,
    state-machine legality, then the role's own transition set.
    """
    if is_admin(actor_role):
        raise Forbidden("Admins must use the override endpoint to change order status")

    try:
        order = await _load_order(db, order_id)
        _check_ownership(order, actor_id, actor_role)

        from_status = order.status
        if from_status == to_status:
            return TransitionResult(order=order, changed=False)

        assert_transition(from_status, to_status)
        _check_role(actor_role, from_status, to_status)

        await _swap_status(db, order_id, from_status, to_status)

        warnings: list[str] = []
        if to_status == OrderStatus.REFUNDED:
            warnings = await restore_stock(db, order)

        order_number = order.order_number
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info(
        "Order %s %s -> %s by %s %s",
        order_number,
        from_status.value,
        to_status.value,
        actor_role.value,
        actor_id,
    )
    order = (await load_orders(db, [order_id]))[0]
    return TransitionResult(order=order, changed=True, warnings=warnings)


async def admin_override(
    db: AsyncSession,
    *,
    admin_id: str,
    admin_role: UserRole = UserRole.ADMIN,
    order_id: uuid.UUID,
    to_status: OrderStatus,
    reason: str,
) -> TransitionResult:
    """Any-to-any status change for dispute resolution, always audited."""
    if not is_admin(admin_role):
        raise Forbidden("Admin role required")

    reason = (reason or "").strip()
    if len(reason) < settings.OVERRIDE_REASON_MIN_LENGTH:
        raise ValidationError(
            f"Reason must be at least {settings.OVERRIDE_REASON_MIN_LENGTH} characters"
        )

    try:
        order = await _load_order(db, order_id)
        from_status = order.status
        if from_status == to_status:
            return TransitionResult(order=order, changed=False)

        await _swap_status(db, order_id, from_status, to_status)

        warnings: list[str] = []
        if (
            to_status == OrderStatus.REFUNDED
            and from_status in STOCK_HOLDING_STATUSES
        ):
            warnings = await restore_stock(db, order)

        audit.record_override(
            db,
            order_id=order_id,
            admin_id=admin_id,
            from_status=from_status,
            to_status=to_status,
            reason=reason,
        )
        order_number = order.order_number
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.warning(
        "Admin %s overrode order %s %s -> %s: %s",
        admin_id,
        order_number,
        from_status.value,
        to_status.value,
        reason,
    )
    order = (await load_orders(db, [order_id]))[0]
    return TransitionResult(order=order, changed=True, warnings=warnings)
