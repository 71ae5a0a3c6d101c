"""Market commerce models: addresses, cart, orders, payments, audit logs."""

import random
import string
import time
import uuid
from datetime import datetime
from typing import Optional

from libs.common.datetime_utils import utc_now
from libs.db.base import Base
from services.market_service.models.enums import OrderStatus, PaymentStatus, enum_values
from sqlalchemy import JSON, CheckConstraint, DateTime
from sqlalchemy import Enum as SAEnum
from sqlalchemy import ForeignKey, Index, Integer, String, Text, UniqueConstraint, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

JSONType = JSON().with_variant(JSONB, "postgresql")

_BASE36 = string.digits + string.ascii_uppercase


def _to_base36(value: int) -> str:
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits)) or "0"


# ============================================================================
# ADDRESS MODEL
# ============================================================================


class Address(Base):
    """Buyer address book entry. Orders copy it; they never reference it."""

    __tablename__ = "market_addresses"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    user_id: Mapped[str] = mapped_column(String(255), index=True, nullable=False)

    name: Mapped[str] = mapped_column(String(100), nullable=False)
    phone: Mapped[str] = mapped_column(String(50), nullable=False)
    zip_code: Mapped[str] = mapped_column(String(20), nullable=False)
    addr1: Mapped[str] = mapped_column(String(255), nullable=False)
    addr2: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    memo: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )

    def __repr__(self):
        return f"<Address {self.id} user={self.user_id}>"


# ============================================================================
# CART MODEL
# ============================================================================


class CartItem(Base):
    """Persistent cart line, one per (user, variant)."""

    __tablename__ = "market_cart_items"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    user_id: Mapped[str] = mapped_column(String(255), index=True, nullable=False)
    variant_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("market_product_variants.id", ondelete="CASCADE"),
        nullable=False,
    )

    quantity: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        UniqueConstraint("user_id", "variant_id", name="unique_cart_user_variant"),
        CheckConstraint("quantity > 0", name="positive_cart_quantity"),
    )

    # Relationships
    variant = relationship("ProductVariant")

    def __repr__(self):
        return f"<CartItem variant={self.variant_id} qty={self.quantity}>"


# ============================================================================
# ORDER MODELS
# ============================================================================


class Order(Base):
    """One order per (buyer, seller) pairing of a checkout attempt."""

    __tablename__ = "market_orders"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    order_number: Mapped[str] = mapped_column(
        String(32), unique=True, nullable=False, index=True
    )

    buyer_id: Mapped[str] = mapped_column(String(255), index=True, nullable=False)
    seller_id: Mapped[str] = mapped_column(String(255), index=True, nullable=False)

    # Status (written only through conditional updates)
    status: Mapped[OrderStatus] = mapped_column(
        SAEnum(
            OrderStatus,
            values_callable=enum_values,
            name="market_order_status_enum",
        ),
        default=OrderStatus.PENDING,
        server_default="PENDING",
        nullable=False,
    )

    # Pricing snapshot (frozen at creation, never recomputed)
    items_subtotal_krw: Mapped[int] = mapped_column(Integer, nullable=False)
    shipping_fee_krw: Mapped[int] = mapped_column(
        Integer, default=0, server_default="0", nullable=False
    )
    total_pay_krw: Mapped[int] = mapped_column(Integer, nullable=False)

    # Lazy expiry deadline for PENDING orders
    expires_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Shipping address snapshot
    ship_to_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    ship_to_phone: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    ship_to_zip: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    ship_to_addr1: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    ship_to_addr2: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    ship_to_memo: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Timestamps
    paid_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        CheckConstraint("items_subtotal_krw >= 0", name="non_negative_subtotal"),
        CheckConstraint("shipping_fee_krw >= 0", name="non_negative_order_fee"),
        Index("ix_market_orders_buyer_status", "buyer_id", "status"),
        Index("ix_market_orders_seller_status", "seller_id", "status"),
    )

    # Relationships
    items = relationship(
        "OrderItem", back_populates="order", cascade="all, delete-orphan"
    )
    payment = relationship(
        "Payment", back_populates="order", uselist=False, cascade="all, delete-orphan"
    )

    @staticmethod
    def generate_order_number() -> str:
        """Generate an order number like ORD-LZ3K9Q1A-7F2C.

        Cosmetic only; uniqueness is backed by the column constraint.
        """
        timestamp = _to_base36(time.time_ns() // 1_000_000)
        random_part = "".join(random.choices(_BASE36, k=4))
        return f"ORD-{timestamp}-{random_part}"

    def __repr__(self):
        return f"<Order {self.order_number} {self.status}>"


class OrderItem(Base):
    """Order line items (snapshot at order time)."""

    __tablename__ = "market_order_items"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("market_orders.id", ondelete="CASCADE"),
        index=True,
        nullable=False,
    )
    product_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("market_products.id"), nullable=False
    )
    # Nullable: variants may be deleted after the sale
    variant_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("market_product_variants.id", ondelete="SET NULL"),
        nullable=True,
    )

    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price_krw: Mapped[int] = mapped_column(Integer, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )

    __table_args__ = (CheckConstraint("quantity > 0", name="positive_order_quantity"),)

    # Relationships
    order = relationship("Order", back_populates="items")
    product = relationship("Product")
    variant = relationship("ProductVariant")

    @property
    def line_total_krw(self) -> int:
        return self.unit_price_krw * self.quantity

    def __repr__(self):
        return f"<OrderItem {self.product_id} qty={self.quantity}>"


# ============================================================================
# PAYMENT MODEL
# ============================================================================


class Payment(Base):
    """Payment attempt for an order (one-to-one)."""

    __tablename__ = "market_payments"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("market_orders.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
    )

    # Gateway idempotency token; one key maps to at most one order
    payment_key: Mapped[Optional[str]] = mapped_column(
        String(200), unique=True, nullable=True
    )

    status: Mapped[PaymentStatus] = mapped_column(
        SAEnum(
            PaymentStatus,
            values_callable=enum_values,
            name="market_payment_status_enum",
        ),
        default=PaymentStatus.READY,
        server_default="READY",
        nullable=False,
    )
    amount_krw: Mapped[int] = mapped_column(Integer, nullable=False)
    method: Mapped[str] = mapped_column(
        String(50), default="PENDING", server_default="PENDING"
    )

    approved_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    raw_response: Mapped[Optional[dict]] = mapped_column(
        JSONType, nullable=True
    )  # {"failure_reason": "OUT_OF_STOCK", "product_id": "..."}

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )

    # Relationships
    order = relationship("Order", back_populates="payment")

    def __repr__(self):
        return f"<Payment order={self.order_id} {self.status}>"


# ============================================================================
# AUDIT LOG MODEL
# ============================================================================


class OrderAuditLog(Base):
    """Append-only record of administrator status overrides."""

    __tablename__ = "market_order_audit_logs"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("market_orders.id"), nullable=False
    )
    admin_id: Mapped[str] = mapped_column(String(255), nullable=False)

    from_status: Mapped[OrderStatus] = mapped_column(
        SAEnum(
            OrderStatus,
            values_callable=enum_values,
            name="market_order_status_enum",
        ),
        nullable=False,
    )
    to_status: Mapped[OrderStatus] = mapped_column(
        SAEnum(
            OrderStatus,
            values_callable=enum_values,
            name="market_order_status_enum",
        ),
        nullable=False,
    )
    reason: Mapped[str] = mapped_column(Text, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )

    __table_args__ = (
        Index("ix_market_order_audit_logs_order", "order_id", "created_at"),
    )

    def __repr__(self):
        return f"<OrderAuditLog {self.order_id} {self.from_status}->{self.to_status}>"
