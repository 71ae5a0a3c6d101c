"""Market cart router: persistent cart and cart checkout."""

import uuid

from fastapi import APIRouter, Depends
from libs.auth.dependencies import get_current_user
from libs.auth.models import AuthUser
from libs.db.session import get_async_db
from services.market_service.models import CartItem
from services.market_service.schemas import (
    CartItemCreate,
    CartItemResponse,
    CartResponse,
    CheckoutRequest,
    CreateOrdersResponse,
    OrderResponse,
)
from services.market_service.services import cart as cart_service
from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter(tags=["cart"])


# ============================================================================
# CART HELPERS
# ============================================================================


def _item_response(item: CartItem) -> CartItemResponse:
    variant = item.variant
    product = variant.product
    return CartItemResponse(
        id=item.id,
        variant_id=item.variant_id,
        quantity=item.quantity,
        product_id=product.id,
        product_title=product.title,
        variant_label=variant.label,
        unit_price_krw=product.price_krw,
        stock=variant.stock,
    )


# ============================================================================
# CART ENDPOINTS
# ============================================================================


@router.get("/cart", response_model=CartResponse)
async def get_cart(
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    items = await cart_service.list_cart(db, current_user.user_id)
    responses = [_item_response(item) for item in items]
    return CartResponse(
        items=responses,
        subtotal_krw=sum(r.unit_price_krw * r.quantity for r in responses),
    )


@router.post("/cart", response_model=CartItemResponse, status_code=201)
async def add_cart_item(
    payload: CartItemCreate,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    """Add a variant to the cart, or increase its quantity."""
    item = await cart_service.add_to_cart(
        db,
        user_id=current_user.user_id,
        user_role=current_user.role,
        variant_id=payload.variant_id,
        quantity=payload.quantity,
    )
    return _item_response(item)


@router.delete("/cart/{item_id}", status_code=204)
async def remove_cart_item(
    item_id: uuid.UUID,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    await cart_service.remove_cart_item(
        db, user_id=current_user.user_id, item_id=item_id
    )


@router.delete("/cart", status_code=204)
async def clear_cart(
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    await cart_service.clear_cart(db, current_user.user_id)


@router.post("/cart/checkout", response_model=CreateOrdersResponse, status_code=201)
async def checkout_cart(
    payload: CheckoutRequest,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    """Split the cart into per-seller PENDING orders.

    Cart lines stay until their order is paid.
    """
    orders = await cart_service.checkout_cart(
        db,
        buyer_id=current_user.user_id,
        buyer_role=current_user.role,
        address_id=payload.address_id,
    )
    return CreateOrdersResponse(
        order_ids=[order.id for order in orders],
        orders=[OrderResponse.model_validate(order) for order in orders],
    )
