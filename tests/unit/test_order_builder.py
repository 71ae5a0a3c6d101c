"""Unit tests for the order aggregate builder."""

import uuid
from datetime import timedelta

import pytest
from libs.auth.roles import UserRole
from libs.common.datetime_utils import as_utc, utc_now
from services.market_service.errors import (
    ErrorCode,
    Forbidden,
    InvalidState,
    NotFound,
    OutOfStock,
    OwnershipViolation,
    ProductUnavailable,
    ValidationError,
)
from services.market_service.models import Order, OrderStatus, PaymentStatus
from services.market_service.services.inventory import get_stock
from services.market_service.services.order_builder import (
    OrderLine,
    ShippingPolicy,
    create_direct_order,
    create_orders,
    update_shipping_address,
)
from sqlalchemy import func, select
from tests.factories import AddressFactory, create_listing, create_seller


async def _order_count(db) -> int:
    return await db.scalar(select(func.count(Order.id)))


def _line(product, variant, quantity=1) -> OrderLine:
    return OrderLine(product_id=product.id, variant_id=variant.id, quantity=quantity)


# ---------------------------------------------------------------------------
# Shipping policy
# ---------------------------------------------------------------------------


@pytest.mark.unit
def test_shipping_fee_waived_at_threshold():
    policy = ShippingPolicy(fee_krw=3000, free_threshold_krw=50000)

    assert policy.fee_for(49999) == 3000
    assert policy.fee_for(50000) == 0
    assert policy.fee_for(60000) == 0


# ---------------------------------------------------------------------------
# create_orders
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_split_checkout_creates_one_order_per_seller(db_session):
    """Seller A 40,000 pays the fee, seller B 60,000 ships free."""
    await create_seller(db_session, "seller-a")
    await create_seller(db_session, "seller-b")
    product_a1, (variant_a1,) = await create_listing(
        db_session, seller_id="seller-a", price_krw=15000
    )
    product_a2, (variant_a2,) = await create_listing(
        db_session, seller_id="seller-a", price_krw=25000
    )
    product_b, (variant_b,) = await create_listing(
        db_session, seller_id="seller-b", price_krw=60000
    )

    orders = await create_orders(
        db_session,
        buyer_id="buyer-1",
        buyer_role=UserRole.CUSTOMER,
        lines=[
            _line(product_a1, variant_a1),
            _line(product_b, variant_b),
            _line(product_a2, variant_a2),
        ],
    )

    assert [o.seller_id for o in orders] == ["seller-a", "seller-b"]
    order_a, order_b = orders

    assert order_a.items_subtotal_krw == 40000
    assert order_a.shipping_fee_krw == 3000
    assert order_a.total_pay_krw == 43000
    assert len(order_a.items) == 2

    assert order_b.items_subtotal_krw == 60000
    assert order_b.shipping_fee_krw == 0
    assert order_b.total_pay_krw == 60000

    for order in orders:
        assert order.status == OrderStatus.PENDING
        assert order.buyer_id == "buyer-1"
        assert order.payment.status == PaymentStatus.READY
        assert order.payment.amount_krw == order.total_pay_krw
        assert order.order_number.startswith("ORD-")
        expires_in = as_utc(order.expires_at) - utc_now()
        assert timedelta(minutes=29) < expires_in <= timedelta(minutes=30)


@pytest.mark.asyncio
@pytest.mark.unit
async def test_create_orders_does_not_touch_stock(db_session):
    product, (variant,) = await create_listing(db_session, stock=2)

    await create_orders(
        db_session,
        buyer_id="buyer-1",
        buyer_role=UserRole.CUSTOMER,
        lines=[_line(product, variant, 2)],
    )

    assert await get_stock(db_session, variant.id) == 2


@pytest.mark.asyncio
@pytest.mark.unit
async def test_create_orders_snapshots_unit_price(db_session):
    product, (variant,) = await create_listing(db_session, price_krw=12000)

    (order,) = await create_orders(
        db_session,
        buyer_id="buyer-1",
        buyer_role=UserRole.CUSTOMER,
        lines=[_line(product, variant, 3)],
    )

    item = order.items[0]
    assert item.unit_price_krw == 12000
    assert item.quantity == 3
    assert item.line_total_krw == 36000


@pytest.mark.asyncio
@pytest.mark.unit
async def test_default_policy_applies_without_seller_profile(db_session):
    product, (variant,) = await create_listing(
        db_session, seller_id="no-profile", price_krw=1000
    )

    (order,) = await create_orders(
        db_session,
        buyer_id="buyer-1",
        buyer_role=UserRole.CUSTOMER,
        lines=[_line(product, variant)],
    )

    assert order.shipping_fee_krw == 3000
    assert order.total_pay_krw == 4000


@pytest.mark.asyncio
@pytest.mark.unit
async def test_duplicate_lines_for_one_variant_are_merged(db_session):
    product, (variant,) = await create_listing(db_session, stock=5)

    (order,) = await create_orders(
        db_session,
        buyer_id="buyer-1",
        buyer_role=UserRole.CUSTOMER,
        lines=[_line(product, variant, 2), _line(product, variant, 3)],
    )

    assert len(order.items) == 1
    assert order.items[0].quantity == 5


@pytest.mark.asyncio
@pytest.mark.unit
async def test_stock_precheck_rejects_and_creates_nothing(db_session):
    """A bad second line aborts the whole attempt, including the first seller."""
    product_a, (variant_a,) = await create_listing(db_session, seller_id="seller-a")
    product_b, (variant_b,) = await create_listing(
        db_session, seller_id="seller-b", stock=1
    )

    with pytest.raises(OutOfStock) as exc_info:
        await create_orders(
            db_session,
            buyer_id="buyer-1",
            buyer_role=UserRole.CUSTOMER,
            lines=[_line(product_a, variant_a), _line(product_b, variant_b, 2)],
        )

    assert exc_info.value.details["available"] == 1
    assert await _order_count(db_session) == 0


@pytest.mark.asyncio
@pytest.mark.unit
@pytest.mark.parametrize(
    "flags", [{"is_active": False}, {"is_deleted": True}], ids=["inactive", "deleted"]
)
async def test_unpurchasable_product_rejected(db_session, flags):
    product, (variant,) = await create_listing(db_session, **flags)

    with pytest.raises(ProductUnavailable):
        await create_orders(
            db_session,
            buyer_id="buyer-1",
            buyer_role=UserRole.CUSTOMER,
            lines=[_line(product, variant)],
        )
    assert await _order_count(db_session) == 0


@pytest.mark.asyncio
@pytest.mark.unit
async def test_variant_must_belong_to_product(db_session):
    product_a, _ = await create_listing(db_session)
    _, (variant_b,) = await create_listing(db_session)

    with pytest.raises(ValidationError):
        await create_orders(
            db_session,
            buyer_id="buyer-1",
            buyer_role=UserRole.CUSTOMER,
            lines=[OrderLine(product_a.id, variant_b.id, 1)],
        )


@pytest.mark.asyncio
@pytest.mark.unit
async def test_unknown_variant_is_not_found(db_session):
    product, _ = await create_listing(db_session)

    with pytest.raises(NotFound) as exc_info:
        await create_orders(
            db_session,
            buyer_id="buyer-1",
            buyer_role=UserRole.CUSTOMER,
            lines=[OrderLine(product.id, uuid.uuid4(), 1)],
        )
    assert exc_info.value.code == ErrorCode.VARIANT_NOT_FOUND


@pytest.mark.asyncio
@pytest.mark.unit
async def test_empty_or_zero_quantity_lines_rejected(db_session):
    product, (variant,) = await create_listing(db_session)

    with pytest.raises(ValidationError):
        await create_orders(
            db_session, buyer_id="buyer-1", buyer_role=UserRole.CUSTOMER, lines=[]
        )
    with pytest.raises(ValidationError):
        await create_orders(
            db_session,
            buyer_id="buyer-1",
            buyer_role=UserRole.CUSTOMER,
            lines=[_line(product, variant, 0)],
        )


@pytest.mark.asyncio
@pytest.mark.unit
@pytest.mark.parametrize(
    "role", [UserRole.SELLER_PENDING, UserRole.SELLER_ACTIVE, UserRole.ADMIN]
)
async def test_seller_capable_roles_cannot_order(db_session, role):
    product, (variant,) = await create_listing(db_session)

    with pytest.raises(Forbidden):
        await create_orders(
            db_session,
            buyer_id="someone",
            buyer_role=role,
            lines=[_line(product, variant)],
        )


# ---------------------------------------------------------------------------
# Addresses
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_address_is_snapshotted_into_order(db_session):
    product, (variant,) = await create_listing(db_session)
    address = AddressFactory.create(user_id="buyer-1")
    db_session.add(address)
    await db_session.commit()

    (order,) = await create_orders(
        db_session,
        buyer_id="buyer-1",
        buyer_role=UserRole.CUSTOMER,
        lines=[_line(product, variant)],
        address_id=address.id,
    )

    # Later edits to the address book do not reach the order
    address.addr1 = "Somewhere else"
    await db_session.commit()

    assert order.ship_to_name == "Kim Minji"
    assert order.ship_to_zip == "04524"
    assert order.ship_to_addr1 == "110 Sejong-daero, Jung-gu, Seoul"


@pytest.mark.asyncio
@pytest.mark.unit
async def test_foreign_address_rejected(db_session):
    product, (variant,) = await create_listing(db_session)
    address = AddressFactory.create(user_id="someone-else")
    db_session.add(address)
    await db_session.commit()

    with pytest.raises(OwnershipViolation):
        await create_orders(
            db_session,
            buyer_id="buyer-1",
            buyer_role=UserRole.CUSTOMER,
            lines=[_line(product, variant)],
            address_id=address.id,
        )


@pytest.mark.asyncio
@pytest.mark.unit
async def test_update_shipping_address_only_while_pending(db_session):
    product, (variant,) = await create_listing(db_session)
    address = AddressFactory.create(user_id="buyer-1", name="Lee Jun")
    db_session.add(address)
    await db_session.commit()

    (order,) = await create_orders(
        db_session,
        buyer_id="buyer-1",
        buyer_role=UserRole.CUSTOMER,
        lines=[_line(product, variant)],
    )

    updated = await update_shipping_address(
        db_session, buyer_id="buyer-1", order_id=order.id, address_id=address.id
    )
    assert updated.ship_to_name == "Lee Jun"

    with pytest.raises(OwnershipViolation):
        await update_shipping_address(
            db_session, buyer_id="buyer-2", order_id=order.id, address_id=address.id
        )

    updated.status = OrderStatus.PAID
    await db_session.commit()
    with pytest.raises(InvalidState):
        await update_shipping_address(
            db_session, buyer_id="buyer-1", order_id=order.id, address_id=address.id
        )


# ---------------------------------------------------------------------------
# create_direct_order
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_direct_order_creates_single_pending_order(db_session):
    await create_seller(
        db_session, "seller-a", shipping_fee_krw=2500, free_shipping_threshold_krw=30000
    )
    _, (variant,) = await create_listing(
        db_session, seller_id="seller-a", price_krw=9000, stock=3
    )

    order = await create_direct_order(
        db_session,
        buyer_id="buyer-1",
        buyer_role=UserRole.CUSTOMER,
        variant_id=variant.id,
        quantity=2,
    )

    assert order.status == OrderStatus.PENDING
    assert order.total_pay_krw == 18000 + 2500
    assert await get_stock(db_session, variant.id) == 3


@pytest.mark.asyncio
@pytest.mark.unit
async def test_direct_order_unknown_variant(db_session):
    with pytest.raises(NotFound):
        await create_direct_order(
            db_session,
            buyer_id="buyer-1",
            buyer_role=UserRole.CUSTOMER,
            variant_id=uuid.uuid4(),
            quantity=1,
        )
