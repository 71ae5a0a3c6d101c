"""Order aggregate builder: turn purchase lines into PENDING orders.

Lines are validated against the live catalog, grouped by seller (one order per
seller), priced once and frozen. Stock is only pre-checked here; the payment
confirmation engine is the sole place that decrements it.
"""

import uuid
from dataclasses import dataclass
from typing import Iterable, Optional

from libs.auth.roles import UserRole, can_create_orders
from libs.common.config import get_settings
from libs.common.datetime_utils import minutes_from_now
from libs.common.logging import get_logger
from services.market_service.errors import (
    Conflict,
    ErrorCode,
    Forbidden,
    InvalidState,
    NotFound,
    OutOfStock,
    OwnershipViolation,
    ProductUnavailable,
    ValidationError,
)
from services.market_service.models import (
    Address,
    Order,
    OrderItem,
    OrderStatus,
    Payment,
    PaymentStatus,
    ProductVariant,
    SellerProfile,
)
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

logger = get_logger(__name__)
settings = get_settings()


@dataclass(frozen=True)
class OrderLine:
    """One requested purchase line."""

    product_id: uuid.UUID
    variant_id: uuid.UUID
    quantity: int


@dataclass(frozen=True)
class ShippingPolicy:
    fee_krw: int
    free_threshold_krw: int

    @classmethod
    def default(cls) -> "ShippingPolicy":
        return cls(
            fee_krw=settings.DEFAULT_SHIPPING_FEE_KRW,
            free_threshold_krw=settings.DEFAULT_FREE_SHIPPING_THRESHOLD_KRW,
        )

    @classmethod
    def from_profile(cls, profile: Optional[SellerProfile]) -> "ShippingPolicy":
        if profile is None:
            return cls.default()
        return cls(
            fee_krw=profile.shipping_fee_krw,
            free_threshold_krw=profile.free_shipping_threshold_krw,
        )

    def fee_for(self, subtotal_krw: int) -> int:
        """Flat fee, waived once the subtotal reaches the threshold."""
        if subtotal_krw >= self.free_threshold_krw:
            return 0
        return self.fee_krw


# ============================================================================
# HELPERS
# ============================================================================


def _merge_lines(lines: Iterable[OrderLine]) -> list[OrderLine]:
    """Validate shape and fold repeated variants into a single line."""
    merged: dict[uuid.UUID, OrderLine] = {}
    for line in lines:
        if line.quantity <= 0:
            raise ValidationError("Quantity must be greater than 0")
        existing = merged.get(line.variant_id)
        if existing is None:
            merged[line.variant_id] = line
        elif existing.product_id != line.product_id:
            raise ValidationError("Product/variant mismatch")
        else:
            merged[line.variant_id] = OrderLine(
                product_id=line.product_id,
                variant_id=line.variant_id,
                quantity=existing.quantity + line.quantity,
            )
    if not merged:
        raise ValidationError("At least one order line is required")
    return list(merged.values())


async def _load_variants(
    db: AsyncSession, variant_ids: list[uuid.UUID]
) -> dict[uuid.UUID, ProductVariant]:
    result = await db.execute(
        select(ProductVariant)
        .where(ProductVariant.id.in_(variant_ids))
        .options(selectinload(ProductVariant.product))
        .execution_options(populate_existing=True)
    )
    return {variant.id: variant for variant in result.scalars().all()}


async def _load_shipping_policies(
    db: AsyncSession, seller_ids: list[str]
) -> dict[str, ShippingPolicy]:
    result = await db.execute(
        select(SellerProfile).where(SellerProfile.user_id.in_(seller_ids))
    )
    profiles = {p.user_id: p for p in result.scalars().all()}
    return {
        seller_id: ShippingPolicy.from_profile(profiles.get(seller_id))
        for seller_id in seller_ids
    }


def _validate_line(line: OrderLine, variant: Optional[ProductVariant]) -> None:
    if variant is None:
        raise NotFound(
            f"Variant not found: {line.variant_id}",
            code=ErrorCode.VARIANT_NOT_FOUND,
        )
    product = variant.product
    if product.id != line.product_id:
        raise ValidationError("Product/variant mismatch")
    if not product.is_purchasable:
        raise ProductUnavailable(
            f"Product is not available: {product.title}",
            details={"product_id": str(product.id)},
        )
    # Pre-check only; nothing is reserved until payment confirmation
    if line.quantity > variant.stock:
        raise OutOfStock(
            f"Insufficient stock for {product.title} ({variant.label}): "
            f"requested {line.quantity}, available {variant.stock}",
            details={
                "variant_id": str(variant.id),
                "requested": line.quantity,
                "available": variant.stock,
            },
        )


async def snapshot_address(
    db: AsyncSession, *, buyer_id: str, address_id: uuid.UUID
) -> dict[str, Optional[str]]:
    """Copy a buyer-owned address into order ``ship_to_*`` fields."""
    address = await db.get(Address, address_id)
    if address is None:
        raise NotFound("Address not found")
    if address.user_id != buyer_id:
        raise OwnershipViolation("Address does not belong to you")
    return {
        "ship_to_name": address.name,
        "ship_to_phone": address.phone,
        "ship_to_zip": address.zip_code,
        "ship_to_addr1": address.addr1,
        "ship_to_addr2": address.addr2,
        "ship_to_memo": address.memo,
    }


async def load_orders(db: AsyncSession, order_ids: list[uuid.UUID]) -> list[Order]:
    """Fetch orders with items and payment, preserving the given id order."""
    result = await db.execute(
        select(Order)
        .where(Order.id.in_(order_ids))
        .options(selectinload(Order.items), selectinload(Order.payment))
        .execution_options(populate_existing=True)
    )
    by_id = {order.id: order for order in result.scalars().all()}
    return [by_id[order_id] for order_id in order_ids if order_id in by_id]


# ============================================================================
# OPERATIONS
# ============================================================================


async def create_orders(
    db: AsyncSession,
    *,
    buyer_id: str,
    buyer_role: UserRole,
    lines: Iterable[OrderLine],
    address_id: Optional[uuid.UUID] = None,
) -> list[Order]:
    """Create one PENDING order per seller for the given lines.

    Either every order of the attempt is committed or none is.
    """
    if not can_create_orders(buyer_role):
        raise Forbidden("Sellers cannot create orders")

    merged = _merge_lines(lines)

    try:
        variants = await _load_variants(db, [line.variant_id for line in merged])

        # Group by owning seller, keeping first-seen order
        groups: dict[str, list[tuple[OrderLine, ProductVariant]]] = {}
        for line in merged:
            variant = variants.get(line.variant_id)
            _validate_line(line, variant)
            groups.setdefault(variant.product.seller_id, []).append((line, variant))

        ship_to = {}
        if address_id is not None:
            ship_to = await snapshot_address(
                db, buyer_id=buyer_id, address_id=address_id
            )

        policies = await _load_shipping_policies(db, list(groups))
        expires_at = minutes_from_now(settings.ORDER_EXPIRY_MINUTES)

        orders: list[Order] = []
        for seller_id, seller_lines in groups.items():
            items = [
                OrderItem(
                    product_id=variant.product_id,
                    variant_id=variant.id,
                    quantity=line.quantity,
                    unit_price_krw=variant.product.price_krw,
                )
                for line, variant in seller_lines
            ]
            subtotal = sum(item.unit_price_krw * item.quantity for item in items)
            shipping_fee = policies[seller_id].fee_for(subtotal)
            total = subtotal + shipping_fee

            order = Order(
                order_number=Order.generate_order_number(),
                buyer_id=buyer_id,
                seller_id=seller_id,
                status=OrderStatus.PENDING,
                items_subtotal_krw=subtotal,
                shipping_fee_krw=shipping_fee,
                total_pay_krw=total,
                expires_at=expires_at,
                **ship_to,
            )
            order.items = items
            order.payment = Payment(
                amount_krw=total, method="PENDING", status=PaymentStatus.READY
            )
            db.add(order)
            orders.append(order)

        await db.flush()
        order_ids = [order.id for order in orders]
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        logger.warning("Order creation for buyer %s hit a constraint: %s", buyer_id, exc)
        raise Conflict("Order could not be created, please retry") from exc
    except Exception:
        await db.rollback()
        raise

    created = await load_orders(db, order_ids)
    for order in created:
        logger.info(
            "Created order %s buyer=%s seller=%s subtotal=%d fee=%d total=%d",
            order.order_number,
            buyer_id,
            order.seller_id,
            order.items_subtotal_krw,
            order.shipping_fee_krw,
            order.total_pay_krw,
        )
    return created


async def create_direct_order(
    db: AsyncSession,
    *,
    buyer_id: str,
    buyer_role: UserRole,
    variant_id: uuid.UUID,
    quantity: int,
    address_id: Optional[uuid.UUID] = None,
) -> Order:
    """Buy-now path: a single variant becomes exactly one PENDING order."""
    if not can_create_orders(buyer_role):
        raise Forbidden("Sellers cannot create orders")

    variant = await db.get(ProductVariant, variant_id)
    if variant is None:
        raise NotFound("Variant not found", code=ErrorCode.VARIANT_NOT_FOUND)

    line = OrderLine(
        product_id=variant.product_id, variant_id=variant_id, quantity=quantity
    )
    orders = await create_orders(
        db,
        buyer_id=buyer_id,
        buyer_role=buyer_role,
        lines=[line],
        address_id=address_id,
    )
    return orders[0]


async def update_shipping_address(
    db: AsyncSession,
    *,
    buyer_id: str,
    order_id: uuid.UUID,
    address_id: uuid.UUID,
) -> Order:
    """Snapshot an address into a PENDING order the buyer owns."""
    order = await db.get(Order, order_id)
    if order is None:
        raise NotFound("Order not found", code=ErrorCode.ORDER_NOT_FOUND)
    if order.buyer_id != buyer_id:
        raise OwnershipViolation("Order does not belong to you")
    if order.status != OrderStatus.PENDING:
        raise InvalidState(
            f"Shipping address can only change while PENDING, order is {order.status.value}"
        )

    ship_to = await snapshot_address(db, buyer_id=buyer_id, address_id=address_id)
    for field, value in ship_to.items():
        setattr(order, field, value)
    await db.commit()

    return (await load_orders(db, [order_id]))[0]
