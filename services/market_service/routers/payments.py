"""Market payments router: confirmation and simulated failure."""

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from libs.auth.dependencies import get_current_user
from libs.auth.models import AuthUser
from libs.common.middleware import ERROR_CODE_HEADER
from libs.db.session import get_async_db
from services.market_service.payment_gateway import (
    SimulatedPaymentGateway,
    get_payment_gateway,
)
from services.market_service.schemas import (
    ConfirmPaymentRequest,
    ConfirmPaymentResponse,
    SimulateFailRequest,
    SimulateFailResponse,
)
from services.market_service.services.payment_confirmation import (
    ConfirmOutcome,
    confirm_payment,
    record_payment_failure,
)
from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter(tags=["payments"])


@router.post("/payments/confirm", response_model=ConfirmPaymentResponse)
async def confirm_payment_endpoint(
    payload: ConfirmPaymentRequest,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
    gateway: SimulatedPaymentGateway = Depends(get_payment_gateway),
):
    """Confirm an authorized payment and take stock for the order.

    Out-of-stock returns 409 with ``OUT_OF_STOCK_CANCELLED``; the order is
    already FAILED and the charge has been sent for cancellation.
    """
    result = await confirm_payment(
        db,
        order_id=payload.order_id,
        payment_key=payload.payment_key,
        amount=payload.amount,
        gateway=gateway,
    )
    body = ConfirmPaymentResponse(
        ok=result.ok,
        code=result.outcome.value,
        order_id=result.order_id,
        product_id=result.failed_product_id,
        gateway_cancel=(
            None
            if result.gateway_cancelled is None
            else ("success" if result.gateway_cancelled else "failed")
        ),
    )
    if result.outcome == ConfirmOutcome.OUT_OF_STOCK_CANCELLED:
        return JSONResponse(
            status_code=409,
            content=body.model_dump(mode="json"),
            headers={ERROR_CODE_HEADER: body.code},
        )
    return body


@router.post("/payments/simulate-fail", response_model=SimulateFailResponse)
async def simulate_payment_failure(
    payload: SimulateFailRequest,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    """Mark the payments FAILED; orders stay PENDING so the buyer can retry."""
    marked = await record_payment_failure(
        db, buyer_id=current_user.user_id, order_ids=payload.order_ids
    )
    return SimulateFailResponse(marked=marked)
