"""Unit tests for the checkout / payment confirmation engine."""

import asyncio
import uuid
from datetime import timedelta

import pytest
from libs.auth.roles import UserRole
from libs.common.datetime_utils import utc_now
from services.market_service.errors import (
    AmountMismatch,
    ErrorCode,
    InvalidState,
    NotFound,
    OrderExpired,
    OwnershipViolation,
    PaymentKeyReused,
)
from services.market_service.models import (
    CartItem,
    Order,
    OrderItem,
    OrderStatus,
    PaymentStatus,
    Product,
    ProductVariant,
)
from services.market_service.payment_gateway import SimulatedPaymentGateway
from services.market_service.services.inventory import get_stock
from services.market_service.services.order_builder import (
    OrderLine,
    create_orders,
    load_orders,
)
from services.market_service.services.payment_confirmation import (
    ConfirmOutcome,
    confirm_payment,
    record_payment_failure,
)
from sqlalchemy import select, update
from tests.factories import create_listing


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


async def _make_order(db, lines, buyer_id="buyer-1"):
    """Create one PENDING order from (product, variant, qty) tuples."""
    (order,) = await create_orders(
        db,
        buyer_id=buyer_id,
        buyer_role=UserRole.CUSTOMER,
        lines=[OrderLine(p.id, v.id, qty) for p, v, qty in lines],
    )
    return order


async def _reload(db, order_id) -> Order:
    return (await load_orders(db, [order_id]))[0]


# ---------------------------------------------------------------------------
# Happy path and idempotency
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_confirm_takes_stock_and_marks_paid(db_session, gateway):
    product, (variant,) = await create_listing(db_session, price_krw=10000, stock=5)
    order = await _make_order(db_session, [(product, variant, 2)])

    result = await confirm_payment(
        db_session,
        order_id=order.id,
        payment_key="pk-1",
        amount=order.total_pay_krw,
        gateway=gateway,
    )

    assert result.outcome == ConfirmOutcome.CONFIRMED
    assert result.ok
    assert await get_stock(db_session, variant.id) == 3

    order = await _reload(db_session, order.id)
    assert order.status == OrderStatus.PAID
    assert order.paid_at is not None
    assert order.expires_at is None
    assert order.payment.status == PaymentStatus.CONFIRMED
    assert order.payment.payment_key == "pk-1"
    assert order.payment.approved_at is not None
    assert not gateway.cancellations


@pytest.mark.asyncio
@pytest.mark.unit
async def test_repeat_confirmation_is_already_paid_and_decrements_once(
    db_session, gateway
):
    product, (variant,) = await create_listing(db_session, stock=5)
    order = await _make_order(db_session, [(product, variant, 1)])

    first = await confirm_payment(
        db_session, order_id=order.id, payment_key="pk-1", gateway=gateway
    )
    second = await confirm_payment(
        db_session, order_id=order.id, payment_key="pk-1", gateway=gateway
    )
    third = await confirm_payment(
        db_session, order_id=order.id, payment_key="pk-1", gateway=gateway
    )

    assert first.outcome == ConfirmOutcome.CONFIRMED
    assert second.outcome == ConfirmOutcome.ALREADY_PAID
    assert third.outcome == ConfirmOutcome.ALREADY_PAID
    assert await get_stock(db_session, variant.id) == 4


@pytest.mark.asyncio
@pytest.mark.unit
async def test_payment_key_bound_to_other_order_is_rejected(db_session, gateway):
    product, (variant,) = await create_listing(db_session, stock=5)
    first = await _make_order(db_session, [(product, variant, 1)])
    second = await _make_order(db_session, [(product, variant, 1)])

    await confirm_payment(
        db_session, order_id=first.id, payment_key="pk-shared", gateway=gateway
    )

    with pytest.raises(PaymentKeyReused) as exc_info:
        await confirm_payment(
            db_session, order_id=second.id, payment_key="pk-shared", gateway=gateway
        )

    assert exc_info.value.code == ErrorCode.PAYMENT_KEY_ALREADY_USED
    assert exc_info.value.status_code == 409
    assert (await _reload(db_session, second.id)).status == OrderStatus.PENDING
    assert await get_stock(db_session, variant.id) == 4


# ---------------------------------------------------------------------------
# Out of stock
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_shortage_commits_failed_state_and_cancels_charge(db_session, gateway):
    product_a, (variant_a,) = await create_listing(db_session, stock=5)
    product_b, (variant_b,) = await create_listing(db_session, stock=1)
    order = await _make_order(
        db_session, [(product_a, variant_a, 2), (product_b, variant_b, 1)]
    )
    # Someone else buys the last unit of B after our order was created
    await db_session.execute(
        update(ProductVariant)
        .where(ProductVariant.id == variant_b.id)
        .values(stock=0)
    )
    await db_session.commit()
    # The shortage rollback expires loaded instances; keep plain ids
    order_id, product_b_id = order.id, product_b.id
    variant_a_id, variant_b_id = variant_a.id, variant_b.id

    result = await confirm_payment(
        db_session, order_id=order_id, payment_key="pk-oos", gateway=gateway
    )

    assert result.outcome == ConfirmOutcome.OUT_OF_STOCK_CANCELLED
    assert not result.ok
    assert result.failed_product_id == product_b_id
    assert result.gateway_cancelled is True

    # Units taken for A before the shortage are not kept
    assert await get_stock(db_session, variant_a_id) == 5
    assert await get_stock(db_session, variant_b_id) == 0

    order = await _reload(db_session, order_id)
    assert order.status == OrderStatus.FAILED
    assert order.payment.status == PaymentStatus.FAILED
    assert order.payment.payment_key == "pk-oos"
    assert order.payment.raw_response == {
        "failure_reason": "OUT_OF_STOCK",
        "product_id": str(product_b_id),
    }

    assert [c.payment_key for c in gateway.cancellations] == ["pk-oos"]


@pytest.mark.asyncio
@pytest.mark.unit
async def test_failed_gateway_cancel_does_not_undo_failed_order(db_session):
    gateway = SimulatedPaymentGateway(fail_cancellations=True)
    product, (variant,) = await create_listing(db_session, stock=1)
    order = await _make_order(db_session, [(product, variant, 1)])
    await db_session.execute(
        update(ProductVariant).where(ProductVariant.id == variant.id).values(stock=0)
    )
    await db_session.commit()
    order_id = order.id

    result = await confirm_payment(
        db_session, order_id=order_id, payment_key="pk-x", gateway=gateway
    )

    assert result.outcome == ConfirmOutcome.OUT_OF_STOCK_CANCELLED
    assert result.gateway_cancelled is False
    assert (await _reload(db_session, order_id)).status == OrderStatus.FAILED


@pytest.mark.asyncio
@pytest.mark.unit
async def test_failed_order_cannot_be_confirmed_again(db_session, gateway):
    product, (variant,) = await create_listing(db_session, stock=1)
    order = await _make_order(db_session, [(product, variant, 1)])
    await db_session.execute(
        update(ProductVariant).where(ProductVariant.id == variant.id).values(stock=0)
    )
    await db_session.commit()
    order_id = order.id
    await confirm_payment(
        db_session, order_id=order_id, payment_key="pk-1", gateway=gateway
    )

    with pytest.raises(InvalidState):
        await confirm_payment(
            db_session, order_id=order_id, payment_key="pk-1", gateway=gateway
        )


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_amount_mismatch_leaves_order_untouched(db_session, gateway):
    product, (variant,) = await create_listing(db_session, price_krw=10000, stock=5)
    order = await _make_order(db_session, [(product, variant, 1)])

    with pytest.raises(AmountMismatch) as exc_info:
        await confirm_payment(
            db_session,
            order_id=order.id,
            payment_key="pk-1",
            amount=order.total_pay_krw - 1,
            gateway=gateway,
        )

    assert exc_info.value.details["expected"] == 13000
    assert (await _reload(db_session, order.id)).status == OrderStatus.PENDING
    assert await get_stock(db_session, variant.id) == 5


@pytest.mark.asyncio
@pytest.mark.unit
async def test_unknown_order_is_not_found(db_session, gateway):
    with pytest.raises(NotFound) as exc_info:
        await confirm_payment(
            db_session, order_id=uuid.uuid4(), payment_key="pk-1", gateway=gateway
        )
    assert exc_info.value.code == ErrorCode.ORDER_NOT_FOUND


@pytest.mark.asyncio
@pytest.mark.unit
async def test_cancelled_order_is_invalid_state(db_session, gateway):
    product, (variant,) = await create_listing(db_session)
    order = await _make_order(db_session, [(product, variant, 1)])
    await db_session.execute(
        update(Order).where(Order.id == order.id).values(status=OrderStatus.CANCELLED)
    )
    await db_session.commit()

    with pytest.raises(InvalidState):
        await confirm_payment(
            db_session, order_id=order.id, payment_key="pk-1", gateway=gateway
        )


@pytest.mark.asyncio
@pytest.mark.unit
async def test_expired_order_is_cancelled_lazily(db_session, gateway):
    product, (variant,) = await create_listing(db_session, stock=5)
    order = await _make_order(db_session, [(product, variant, 1)])
    await db_session.execute(
        update(Order)
        .where(Order.id == order.id)
        .values(expires_at=utc_now() - timedelta(minutes=1))
    )
    await db_session.commit()

    with pytest.raises(OrderExpired) as exc_info:
        await confirm_payment(
            db_session, order_id=order.id, payment_key="pk-1", gateway=gateway
        )

    assert exc_info.value.status_code == 410
    order = await _reload(db_session, order.id)
    assert order.status == OrderStatus.CANCELLED
    assert order.cancelled_at is not None
    assert await get_stock(db_session, variant.id) == 5


# ---------------------------------------------------------------------------
# Legacy items without a variant link
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_item_without_variant_falls_back_to_first_variant(db_session, gateway):
    product, variants = await create_listing(db_session, stock=4, variants=1)
    order = await _make_order(db_session, [(product, variants[0], 3)])
    await db_session.execute(
        update(OrderItem).where(OrderItem.order_id == order.id).values(variant_id=None)
    )
    await db_session.commit()

    result = await confirm_payment(
        db_session, order_id=order.id, payment_key="pk-1", gateway=gateway
    )

    assert result.outcome == ConfirmOutcome.CONFIRMED
    assert await get_stock(db_session, variants[0].id) == 1


@pytest.mark.asyncio
@pytest.mark.unit
async def test_item_without_any_variant_is_not_found(db_session, gateway):
    product, (variant,) = await create_listing(db_session)
    order = await _make_order(db_session, [(product, variant, 1)])
    orphan = Product(seller_id=product.seller_id, title="Orphan", price_krw=1)
    db_session.add(orphan)
    await db_session.flush()
    await db_session.execute(
        update(OrderItem)
        .where(OrderItem.order_id == order.id)
        .values(variant_id=None, product_id=orphan.id)
    )
    await db_session.commit()
    order_id = order.id

    with pytest.raises(NotFound) as exc_info:
        await confirm_payment(
            db_session, order_id=order_id, payment_key="pk-1", gateway=gateway
        )

    assert exc_info.value.code == ErrorCode.VARIANT_NOT_FOUND
    assert (await _reload(db_session, order_id)).status == OrderStatus.PENDING


# ---------------------------------------------------------------------------
# Snapshot and cart side effects
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_price_change_after_payment_does_not_move_totals(db_session, gateway):
    product, (variant,) = await create_listing(db_session, price_krw=20000)
    order = await _make_order(db_session, [(product, variant, 2)])
    await confirm_payment(
        db_session, order_id=order.id, payment_key="pk-1", gateway=gateway
    )

    await db_session.execute(
        update(Product).where(Product.id == product.id).values(price_krw=99000)
    )
    await db_session.commit()

    order = await _reload(db_session, order.id)
    assert order.items_subtotal_krw == 40000
    assert order.total_pay_krw == 43000
    assert order.items[0].unit_price_krw == 20000


@pytest.mark.asyncio
@pytest.mark.unit
async def test_confirmation_clears_paid_variants_from_cart(db_session, gateway):
    product, (variant,) = await create_listing(db_session)
    _, (other,) = await create_listing(db_session)
    db_session.add_all(
        [
            CartItem(user_id="buyer-1", variant_id=variant.id, quantity=1),
            CartItem(user_id="buyer-1", variant_id=other.id, quantity=1),
            CartItem(user_id="buyer-2", variant_id=variant.id, quantity=1),
        ]
    )
    await db_session.commit()
    order = await _make_order(db_session, [(product, variant, 1)])

    await confirm_payment(
        db_session, order_id=order.id, payment_key="pk-1", gateway=gateway
    )

    result = await db_session.execute(
        select(CartItem.user_id, CartItem.variant_id).order_by(CartItem.user_id)
    )
    remaining = {tuple(row) for row in result.all()}
    assert remaining == {("buyer-1", other.id), ("buyer-2", variant.id)}


# ---------------------------------------------------------------------------
# Concurrency
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_concurrent_confirmations_never_oversell(session_factory, gateway):
    """Six single-unit orders race for three units of stock."""
    async with session_factory() as setup:
        product, (variant,) = await create_listing(setup, stock=3)
        orders = [
            await _make_order(setup, [(product, variant, 1)], buyer_id=f"buyer-{i}")
            for i in range(6)
        ]
    order_ids = [order.id for order in orders]

    async def attempt(index, order_id):
        async with session_factory() as session:
            return await confirm_payment(
                session,
                order_id=order_id,
                payment_key=f"pk-{index}",
                gateway=gateway,
            )

    results = await asyncio.gather(
        *(attempt(i, order_id) for i, order_id in enumerate(order_ids))
    )

    outcomes = [r.outcome for r in results]
    assert outcomes.count(ConfirmOutcome.CONFIRMED) == 3
    assert outcomes.count(ConfirmOutcome.OUT_OF_STOCK_CANCELLED) == 3
    assert len(gateway.cancellations) == 3

    async with session_factory() as check:
        assert await get_stock(check, variant.id) == 0
        statuses = [o.status for o in await load_orders(check, order_ids)]
    assert statuses.count(OrderStatus.PAID) == 3
    assert statuses.count(OrderStatus.FAILED) == 3


@pytest.mark.asyncio
@pytest.mark.unit
async def test_concurrent_duplicate_confirmation_decrements_once(
    session_factory, gateway
):
    async with session_factory() as setup:
        product, (variant,) = await create_listing(setup, stock=10)
        order = await _make_order(setup, [(product, variant, 1)])

    async def attempt():
        async with session_factory() as session:
            return await confirm_payment(
                session, order_id=order.id, payment_key="pk-dup", gateway=gateway
            )

    results = await asyncio.gather(attempt(), attempt())

    outcomes = sorted(r.outcome.value for r in results)
    assert outcomes == ["ALREADY_PAID", "CONFIRMED"]
    async with session_factory() as check:
        assert await get_stock(check, variant.id) == 9


# ---------------------------------------------------------------------------
# record_payment_failure
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_simulated_failure_keeps_order_pending_for_retry(db_session, gateway):
    product, (variant,) = await create_listing(db_session, stock=5)
    order = await _make_order(db_session, [(product, variant, 1)])

    marked = await record_payment_failure(
        db_session, buyer_id="buyer-1", order_ids=[order.id]
    )

    assert marked == 1
    reloaded = await _reload(db_session, order.id)
    assert reloaded.status == OrderStatus.PENDING
    assert reloaded.payment.status == PaymentStatus.FAILED
    assert await get_stock(db_session, variant.id) == 5

    # The buyer can still pay afterwards
    result = await confirm_payment(
        db_session, order_id=order.id, payment_key="pk-retry", gateway=gateway
    )
    assert result.outcome == ConfirmOutcome.CONFIRMED


@pytest.mark.asyncio
@pytest.mark.unit
async def test_simulated_failure_skips_non_pending_and_checks_owner(
    db_session, gateway
):
    product, (variant,) = await create_listing(db_session, stock=5)
    paid = await _make_order(db_session, [(product, variant, 1)])
    await confirm_payment(
        db_session, order_id=paid.id, payment_key="pk-1", gateway=gateway
    )

    marked = await record_payment_failure(
        db_session, buyer_id="buyer-1", order_ids=[paid.id]
    )
    assert marked == 0
    assert (await _reload(db_session, paid.id)).payment.status == PaymentStatus.CONFIRMED

    with pytest.raises(OwnershipViolation):
        await record_payment_failure(
            db_session, buyer_id="buyer-2", order_ids=[paid.id]
        )


@pytest.mark.asyncio
@pytest.mark.unit
async def test_gateway_keeps_only_recent_cancellations():
    gateway = SimulatedPaymentGateway(history_size=5)

    for i in range(12):
        result = await gateway.cancel_payment(f"pk-{i}", "OUT_OF_STOCK")
        assert result.ok is True

    assert [c.payment_key for c in gateway.cancellations] == [
        f"pk-{i}" for i in range(7, 12)
    ]
