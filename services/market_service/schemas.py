"""Pydantic schemas for market service."""

import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from services.market_service.models import OrderStatus, PaymentStatus

# ============================================================================
# ORDER SCHEMAS
# ============================================================================


class OrderLineRequest(BaseModel):
    product_id: uuid.UUID
    variant_id: uuid.UUID
    quantity: int = Field(..., ge=1)


class CreateOrdersRequest(BaseModel):
    items: list[OrderLineRequest] = Field(..., min_length=1)
    address_id: Optional[uuid.UUID] = None


class DirectOrderRequest(BaseModel):
    variant_id: uuid.UUID
    quantity: int = Field(..., ge=1)
    address_id: Optional[uuid.UUID] = None


class OrdersByIdsRequest(BaseModel):
    ids: list[uuid.UUID] = Field(..., min_length=1)


class UpdateAddressRequest(BaseModel):
    address_id: uuid.UUID


class UpdateStatusRequest(BaseModel):
    to: OrderStatus


class OrderItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    product_id: uuid.UUID
    variant_id: Optional[uuid.UUID] = None
    quantity: int
    unit_price_krw: int
    line_total_krw: int


class PaymentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    status: PaymentStatus
    amount_krw: int
    method: str
    payment_key: Optional[str] = None
    approved_at: Optional[datetime] = None


class OrderResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    order_number: str
    buyer_id: str
    seller_id: str
    status: OrderStatus
    items_subtotal_krw: int
    shipping_fee_krw: int
    total_pay_krw: int
    expires_at: Optional[datetime] = None
    ship_to_name: Optional[str] = None
    ship_to_phone: Optional[str] = None
    ship_to_zip: Optional[str] = None
    ship_to_addr1: Optional[str] = None
    ship_to_addr2: Optional[str] = None
    ship_to_memo: Optional[str] = None
    paid_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    created_at: datetime
    items: list[OrderItemResponse] = []
    payment: Optional[PaymentResponse] = None


class OrderListResponse(BaseModel):
    orders: list[OrderResponse]
    total: int


class CreateOrdersResponse(BaseModel):
    order_ids: list[uuid.UUID]
    orders: list[OrderResponse]


class TransitionResponse(BaseModel):
    ok: bool = True
    changed: bool
    order: OrderResponse
    warnings: list[str] = []


# ============================================================================
# PAYMENT SCHEMAS
# ============================================================================


class ConfirmPaymentRequest(BaseModel):
    order_id: uuid.UUID
    payment_key: str = Field(..., min_length=1, max_length=200)
    amount: Optional[int] = Field(None, ge=0)


class ConfirmPaymentResponse(BaseModel):
    ok: bool
    code: str
    order_id: uuid.UUID
    product_id: Optional[uuid.UUID] = None
    gateway_cancel: Optional[str] = None


class SimulateFailRequest(BaseModel):
    order_ids: list[uuid.UUID] = Field(..., min_length=1)


class SimulateFailResponse(BaseModel):
    ok: bool = True
    marked: int


# ============================================================================
# CART SCHEMAS
# ============================================================================


class CartItemCreate(BaseModel):
    variant_id: uuid.UUID
    quantity: int = Field(1, ge=1)


class CartItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    variant_id: uuid.UUID
    quantity: int
    product_id: Optional[uuid.UUID] = None
    product_title: Optional[str] = None
    variant_label: Optional[str] = None
    unit_price_krw: Optional[int] = None
    stock: Optional[int] = None


class CartResponse(BaseModel):
    items: list[CartItemResponse]
    subtotal_krw: int


class CheckoutRequest(BaseModel):
    address_id: Optional[uuid.UUID] = None


# ============================================================================
# SELLER / ADMIN SCHEMAS
# ============================================================================


class StockAdjustRequest(BaseModel):
    delta: int


class StockAdjustResponse(BaseModel):
    variant_id: uuid.UUID
    stock: int


class OverrideRequest(BaseModel):
    to: OrderStatus
    reason: str = Field(..., max_length=2000)


class AuditLogResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    order_id: uuid.UUID
    admin_id: str
    from_status: OrderStatus
    to_status: OrderStatus
    reason: str
    created_at: datetime
