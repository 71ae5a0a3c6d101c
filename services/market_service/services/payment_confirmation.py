"""Checkout / payment confirmation engine.

The only place stock is decremented for a sale. Each confirmation attempt:

1. Pre-flight idempotency on ``payment_key``.
2. Load the order; PAID is a no-op success, anything but PENDING is rejected.
3. Lazily cancel the order if it is past ``expires_at``.
4. Optional amount check against the frozen totals.
5. Re-read the status inside the transaction.
6. Conditionally decrement stock item by item; the first shortage commits a
   FAILED order and a FAILED payment.
7. Otherwise claim PENDING -> PAID and confirm the payment.
8. After commit, compensate the external charge if stock ran out.
"""

import enum
import uuid
from dataclasses import dataclass
from typing import Iterable, Optional

from libs.common.datetime_utils import has_passed, utc_now
from libs.common.logging import get_logger
from services.market_service.errors import (
    AmountMismatch,
    ErrorCode,
    InvalidState,
    NotFound,
    OrderExpired,
    OwnershipViolation,
    PaymentKeyReused,
    ValidationError,
)
from services.market_service.models import (
    CartItem,
    Order,
    OrderStatus,
    Payment,
    PaymentStatus,
    ProductVariant,
)
from services.market_service.payment_gateway import SimulatedPaymentGateway
from services.market_service.services.inventory import try_decrement
from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

logger = get_logger(__name__)

OUT_OF_STOCK_CANCEL_REASON = "Automatically cancelled: out of stock"


class ConfirmOutcome(str, enum.Enum):
    CONFIRMED = "CONFIRMED"
    ALREADY_PAID = "ALREADY_PAID"
    OUT_OF_STOCK_CANCELLED = "OUT_OF_STOCK_CANCELLED"


@dataclass
class ConfirmResult:
    outcome: ConfirmOutcome
    order_id: uuid.UUID
    failed_product_id: Optional[uuid.UUID] = None
    gateway_cancelled: Optional[bool] = None

    @property
    def ok(self) -> bool:
        return self.outcome != ConfirmOutcome.OUT_OF_STOCK_CANCELLED


@dataclass(frozen=True)
class _ItemSnapshot:
    id: uuid.UUID
    product_id: uuid.UUID
    variant_id: Optional[uuid.UUID]
    quantity: int


@dataclass(frozen=True)
class _OrderSnapshot:
    """Plain values read before the transaction; ORM state expires on rollback."""

    id: uuid.UUID
    order_number: str
    buyer_id: str
    total_pay_krw: int
    items: tuple[_ItemSnapshot, ...]

    @classmethod
    def of(cls, order: Order) -> "_OrderSnapshot":
        return cls(
            id=order.id,
            order_number=order.order_number,
            buyer_id=order.buyer_id,
            total_pay_krw=order.total_pay_krw,
            items=tuple(
                _ItemSnapshot(item.id, item.product_id, item.variant_id, item.quantity)
                for item in order.items
            ),
        )


class _StockShortage(Exception):
    def __init__(self, product_id: uuid.UUID):
        self.product_id = product_id
        super().__init__(str(product_id))


# ============================================================================
# HELPERS
# ============================================================================


async def _current_status(db: AsyncSession, order_id: uuid.UUID, *, lock: bool = False):
    query = select(Order.status).where(Order.id == order_id)
    if lock:
        query = query.with_for_update()
    result = await db.execute(query)
    return result.scalar_one_or_none()


async def _expire_if_due(db: AsyncSession, order: Order) -> None:
    """Cancel a PENDING order whose payment window has closed."""
    if not has_passed(order.expires_at):
        return

    now = utc_now()
    result = await db.execute(
        update(Order)
        .where(Order.id == order.id, Order.status == OrderStatus.PENDING)
        .values(status=OrderStatus.CANCELLED, cancelled_at=now, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    if result.rowcount == 1:
        logger.info(
            "Order %s expired at %s, cancelled", order.order_number, order.expires_at
        )
    raise OrderExpired(
        "The payment window for this order has expired",
        details={"order_id": str(order.id)},
    )


async def _resolve_variant_id(db: AsyncSession, item: _ItemSnapshot) -> uuid.UUID:
    if item.variant_id is not None:
        return item.variant_id

    # Legacy rows without a variant link fall back to the product's first variant
    result = await db.execute(
        select(ProductVariant.id)
        .where(ProductVariant.product_id == item.product_id)
        .order_by(ProductVariant.created_at, ProductVariant.id)
        .limit(1)
    )
    variant_id = result.scalar_one_or_none()
    if variant_id is None:
        raise NotFound(
            "Product variant not found",
            code=ErrorCode.VARIANT_NOT_FOUND,
            details={"product_id": str(item.product_id)},
        )
    logger.warning(
        "Order item %s has no variant link; falling back to variant %s of product %s",
        item.id,
        variant_id,
        item.product_id,
    )
    return variant_id


async def _claim_status(
    db: AsyncSession, order_id: uuid.UUID, new_status: OrderStatus, **values
) -> bool:
    """PENDING -> ``new_status`` iff the order is still PENDING."""
    result = await db.execute(
        update(Order)
        .where(Order.id == order_id, Order.status == OrderStatus.PENDING)
        .values(status=new_status, updated_at=utc_now(), **values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def _mark_failed(
    db: AsyncSession,
    order: _OrderSnapshot,
    payment_key: str,
    product_id: uuid.UUID,
) -> bool:
    if not await _claim_status(db, order.id, OrderStatus.FAILED):
        return False
    await db.execute(
        update(Payment)
        .where(Payment.order_id == order.id)
        .values(
            status=PaymentStatus.FAILED,
            payment_key=payment_key,
            raw_response={
                "failure_reason": "OUT_OF_STOCK",
                "product_id": str(product_id),
            },
            updated_at=utc_now(),
        )
        .execution_options(synchronize_session=False)
    )
    return True


async def _mark_paid(
    db: AsyncSession,
    order: _OrderSnapshot,
    payment_key: str,
    variant_ids: list[uuid.UUID],
) -> bool:
    now = utc_now()
    if not await _claim_status(
        db, order.id, OrderStatus.PAID, paid_at=now, expires_at=None
    ):
        return False
    await db.execute(
        update(Payment)
        .where(Payment.order_id == order.id)
        .values(
            status=PaymentStatus.CONFIRMED,
            payment_key=payment_key,
            approved_at=now,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    if variant_ids:
        await db.execute(
            delete(CartItem)
            .where(
                CartItem.user_id == order.buyer_id,
                CartItem.variant_id.in_(variant_ids),
            )
            .execution_options(synchronize_session=False)
        )
    return True


async def _lost_race(db: AsyncSession, order_id: uuid.UUID) -> ConfirmResult:
    """Another writer moved the order first; report what it did."""
    await db.rollback()
    status = await _current_status(db, order_id)
    if status == OrderStatus.PAID:
        return ConfirmResult(ConfirmOutcome.ALREADY_PAID, order_id)
    raise InvalidState(
        f"Order can no longer be confirmed (status {status.value if status else 'unknown'})"
    )


# ============================================================================
# OPERATIONS
# ============================================================================


async def confirm_payment(
    db: AsyncSession,
    *,
    order_id: uuid.UUID,
    payment_key: str,
    gateway: SimulatedPaymentGateway,
    amount: Optional[int] = None,
) -> ConfirmResult:
    """Confirm payment for a PENDING order and take its stock."""
    if not payment_key:
        raise ValidationError("payment_key is required")

    # 1. Pre-flight idempotency on the payment key
    result = await db.execute(
        select(Payment.order_id, Order.status)
        .join(Order, Order.id == Payment.order_id)
        .where(Payment.payment_key == payment_key)
    )
    bound = result.first()
    if bound is not None:
        bound_order_id, bound_status = bound
        if bound_order_id != order_id:
            raise PaymentKeyReused("This payment has already been processed")
        if bound_status == OrderStatus.PAID:
            return ConfirmResult(ConfirmOutcome.ALREADY_PAID, order_id)

    # 2. Load order
    result = await db.execute(
        select(Order)
        .where(Order.id == order_id)
        .options(selectinload(Order.items), selectinload(Order.payment))
        .execution_options(populate_existing=True)
    )
    order = result.scalar_one_or_none()
    if order is None:
        raise NotFound("Order not found", code=ErrorCode.ORDER_NOT_FOUND)
    if order.status == OrderStatus.PAID:
        return ConfirmResult(ConfirmOutcome.ALREADY_PAID, order_id)
    if order.status != OrderStatus.PENDING:
        raise InvalidState(
            f"Order cannot be confirmed in status {order.status.value}"
        )

    # 3. Lazy expiry
    await _expire_if_due(db, order)

    # 4. Amount check against the frozen snapshot
    if amount is not None:
        expected = order.items_subtotal_krw + order.shipping_fee_krw
        if amount != expected:
            raise AmountMismatch(
                f"Payment amount mismatch: expected {expected}, got {amount}",
                details={"expected": expected, "received": amount},
            )

    snapshot = _OrderSnapshot.of(order)
    failed_product_id: Optional[uuid.UUID] = None
    try:
        # 5. Re-read inside the transaction
        status = await _current_status(db, order_id, lock=True)
        if status == OrderStatus.PAID:
            await db.rollback()
            return ConfirmResult(ConfirmOutcome.ALREADY_PAID, order_id)
        if status != OrderStatus.PENDING:
            await db.rollback()
            raise InvalidState(
                f"Order cannot be confirmed in status {status.value if status else 'unknown'}"
            )

        # 6. Take stock item by item
        variant_ids: list[uuid.UUID] = []
        try:
            for item in snapshot.items:
                variant_id = await _resolve_variant_id(db, item)
                if not await try_decrement(db, variant_id, item.quantity):
                    raise _StockShortage(item.product_id)
                variant_ids.append(variant_id)
        except _StockShortage as shortage:
            # Stock taken for earlier items is returned before the FAILED state is written
            await db.rollback()
            failed_product_id = shortage.product_id
            if not await _mark_failed(db, snapshot, payment_key, failed_product_id):
                return await _lost_race(db, order_id)
        else:
            # 7. Claim the order
            if not await _mark_paid(db, snapshot, payment_key, variant_ids):
                return await _lost_race(db, order_id)

        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        logger.warning(
            "Concurrent confirmation reused payment key for order %s: %s", order_id, exc
        )
        raise PaymentKeyReused("This payment has already been processed") from exc
    except Exception:
        await db.rollback()
        raise

    if failed_product_id is None:
        logger.info(
            "Payment confirmed for order %s (total %d KRW)",
            snapshot.order_number,
            snapshot.total_pay_krw,
        )
        return ConfirmResult(ConfirmOutcome.CONFIRMED, order_id)

    # 8. Compensate outside the transaction; never retried here
    cancel = await gateway.cancel_payment(payment_key, OUT_OF_STOCK_CANCEL_REASON)
    logger.warning(
        "Order %s failed: product %s out of stock; gateway cancel %s",
        snapshot.order_number,
        failed_product_id,
        "succeeded" if cancel.ok else "failed",
    )
    return ConfirmResult(
        ConfirmOutcome.OUT_OF_STOCK_CANCELLED,
        order_id,
        failed_product_id=failed_product_id,
        gateway_cancelled=cancel.ok,
    )


async def record_payment_failure(
    db: AsyncSession, *, buyer_id: str, order_ids: Iterable[uuid.UUID]
) -> int:
    """Mark payments FAILED for the buyer's PENDING orders; orders stay PENDING.

    Non-PENDING orders are skipped. Returns how many payments were marked.
    """
    order_ids = list(order_ids)
    if not order_ids:
        raise ValidationError("order_ids must not be empty")

    try:
        result = await db.execute(
            select(Order)
            .where(Order.id.in_(order_ids))
            .options(selectinload(Order.payment))
            .execution_options(populate_existing=True)
        )
        orders = {order.id: order for order in result.scalars().all()}

        marked = 0
        for order_id in order_ids:
            order = orders.get(order_id)
            if order is None:
                raise NotFound(
                    f"Order not found: {order_id}", code=ErrorCode.ORDER_NOT_FOUND
                )
            if order.buyer_id != buyer_id:
                raise OwnershipViolation(f"Order {order_id} does not belong to you")
            if order.status != OrderStatus.PENDING:
                continue

            if order.payment is None:
                order.payment = Payment(
                    amount_krw=order.total_pay_krw,
                    method="TEST_SIMULATION",
                    status=PaymentStatus.FAILED,
                )
            else:
                order.payment.status = PaymentStatus.FAILED
            marked += 1

        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info("Recorded simulated payment failure for %d order(s)", marked)
    return marked
