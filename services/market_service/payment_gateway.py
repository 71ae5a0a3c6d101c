"""
Payment gateway client (simulated).

Confirmation is driven by a caller-supplied ``payment_key``; the only outbound
call the core makes is the compensating cancellation used when stock runs out
after the customer was charged. The simulated client is deterministic and
keeps a short history of the cancellations it receives.
"""

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Deque, Optional

from libs.common.config import get_settings
from libs.common.datetime_utils import utc_now
from libs.common.logging import get_logger

logger = get_logger(__name__)

settings = get_settings()


@dataclass
class GatewayCancelResult:
    """Outcome of a cancellation request."""

    ok: bool
    payment_key: str
    reason: str
    message: Optional[str] = None


@dataclass
class CancellationRecord:
    payment_key: str
    reason: str
    requested_at: datetime = field(default_factory=utc_now)


class SimulatedPaymentGateway:
    """Deterministic stand-in for the card gateway.

    Only the most recent ``history_size`` cancellations are kept.
    """

    def __init__(self, fail_cancellations: bool = False, history_size: int = 100):
        self.fail_cancellations = fail_cancellations
        self.cancellations: Deque[CancellationRecord] = deque(maxlen=history_size)

    async def cancel_payment(self, payment_key: str, reason: str) -> GatewayCancelResult:
        """Reverse an authorized charge. Never retried by the caller."""
        self.cancellations.append(CancellationRecord(payment_key, reason))

        if self.fail_cancellations:
            logger.error("Simulated gateway refused cancel for %s", payment_key)
            return GatewayCancelResult(
                ok=False,
                payment_key=payment_key,
                reason=reason,
                message="Cancellation rejected by gateway",
            )

        logger.info("Simulated gateway cancelled payment %s (%s)", payment_key, reason)
        return GatewayCancelResult(ok=True, payment_key=payment_key, reason=reason)


_gateway: Optional[SimulatedPaymentGateway] = None


def get_payment_gateway() -> SimulatedPaymentGateway:
    """Return the process-wide gateway client (FastAPI dependency)."""
    global _gateway
    if _gateway is None:
        _gateway = SimulatedPaymentGateway(
            fail_cancellations=settings.PAYMENT_GATEWAY_FAIL_CANCELLATIONS
        )
    return _gateway
