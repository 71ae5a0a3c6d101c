"""Market catalog models: seller profiles, products, variants."""

import uuid
from datetime import datetime
from typing import Optional

from libs.common.datetime_utils import utc_now
from libs.db.base import Base
from sqlalchemy import Boolean, CheckConstraint, DateTime, ForeignKey, Integer, String
from sqlalchemy import Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

# ============================================================================
# SELLER MODELS
# ============================================================================


class SellerProfile(Base):
    """Shop settings for a seller account (approval lives in the identity service)."""

    __tablename__ = "market_seller_profiles"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    user_id: Mapped[str] = mapped_column(
        String(255), unique=True, index=True, nullable=False
    )
    shop_name: Mapped[str] = mapped_column(String(100), nullable=False)

    # Shipping policy (KRW has no minor unit, so plain integers)
    shipping_fee_krw: Mapped[int] = mapped_column(
        Integer, default=3000, server_default="3000", nullable=False
    )
    free_shipping_threshold_krw: Mapped[int] = mapped_column(
        Integer, default=50000, server_default="50000", nullable=False
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        CheckConstraint("shipping_fee_krw >= 0", name="non_negative_shipping_fee"),
        CheckConstraint(
            "free_shipping_threshold_krw >= 0", name="non_negative_free_threshold"
        ),
    )

    def __repr__(self):
        return f"<SellerProfile {self.shop_name}>"


# ============================================================================
# CATALOG MODELS
# ============================================================================


class Product(Base):
    """Products listed by a seller."""

    __tablename__ = "market_products"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    seller_id: Mapped[str] = mapped_column(String(255), index=True, nullable=False)

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Live catalog price; orders snapshot it at creation time
    price_krw: Mapped[int] = mapped_column(Integer, nullable=False)

    is_active: Mapped[bool] = mapped_column(
        Boolean, default=True, server_default="true"
    )
    is_deleted: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default="false"
    )  # Soft delete; order items keep pointing at the row

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )

    __table_args__ = (CheckConstraint("price_krw >= 0", name="non_negative_price"),)

    # Relationships
    variants = relationship(
        "ProductVariant",
        back_populates="product",
        cascade="all, delete-orphan",
        order_by="ProductVariant.created_at",
    )

    @property
    def is_purchasable(self) -> bool:
        return self.is_active and not self.is_deleted

    def __repr__(self):
        return f"<Product {self.title}>"


class ProductVariant(Base):
    """Purchasable SKU of a product, carrying its own stock counter.

    ``stock`` is only ever written through the inventory ledger's conditional
    UPDATE statements.
    """

    __tablename__ = "market_product_variants"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    product_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("market_products.id", ondelete="CASCADE"),
        index=True,
        nullable=False,
    )

    size_label: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    color: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    stock: Mapped[int] = mapped_column(
        Integer, default=0, server_default="0", nullable=False
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )

    __table_args__ = (CheckConstraint("stock >= 0", name="non_negative_stock"),)

    # Relationships
    product = relationship("Product", back_populates="variants")

    @property
    def label(self) -> str:
        parts = [p for p in (self.size_label, self.color) if p]
        return " / ".join(parts) or "Default"

    def __repr__(self):
        return f"<ProductVariant {self.id} stock={self.stock}>"
