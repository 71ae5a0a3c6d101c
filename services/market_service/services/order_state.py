"""Order status state machine.

Pure and side-effect free. This table is the only place that decides whether
a status change is legal; the transition gate and the payment engine both
consult it.
"""

from types import MappingProxyType

from services.market_service.errors import InvalidTransition
from services.market_service.models.enums import OrderStatus

ORDER_TRANSITIONS = MappingProxyType(
    {
        OrderStatus.PENDING: frozenset({OrderStatus.PAID, OrderStatus.CANCELLED}),
        OrderStatus.PAID: frozenset(
            {OrderStatus.SHIPPED, OrderStatus.REFUND_REQUESTED}
        ),
        OrderStatus.SHIPPED: frozenset(
            {OrderStatus.COMPLETED, OrderStatus.REFUND_REQUESTED}
        ),
        OrderStatus.REFUND_REQUESTED: frozenset({OrderStatus.REFUNDED}),
        OrderStatus.FAILED: frozenset(),
        OrderStatus.CANCELLED: frozenset(),
        OrderStatus.COMPLETED: frozenset(),
        OrderStatus.REFUNDED: frozenset(),
    }
)

STATUS_LABELS = MappingProxyType(
    {
        OrderStatus.PENDING: "Awaiting payment",
        OrderStatus.PAID: "Paid",
        OrderStatus.SHIPPED: "Shipped",
        OrderStatus.COMPLETED: "Completed",
        OrderStatus.CANCELLED: "Cancelled",
        OrderStatus.REFUND_REQUESTED: "Refund requested",
        OrderStatus.REFUNDED: "Refunded",
        OrderStatus.FAILED: "Failed",
    }
)


def allowed_transitions(from_status: OrderStatus) -> list[OrderStatus]:
    """Legal targets from ``from_status``, in enum declaration order."""
    targets = ORDER_TRANSITIONS[from_status]
    return [status for status in OrderStatus if status in targets]


def can_transition(from_status: OrderStatus, to_status: OrderStatus) -> bool:
    return to_status in ORDER_TRANSITIONS[from_status]


def assert_transition(from_status: OrderStatus, to_status: OrderStatus) -> None:
    """Raise InvalidTransition (with the allowed set) if the move is illegal."""
    if not can_transition(from_status, to_status):
        raise InvalidTransition(
            from_status, to_status, allowed_transitions(from_status)
        )


def is_terminal(status: OrderStatus) -> bool:
    return not ORDER_TRANSITIONS[status]


def status_label(status: OrderStatus) -> str:
    return STATUS_LABELS[status]


def transition_table() -> dict[str, list[str]]:
    """Serializable view of the table, used for admin diagnostics."""
    return {
        status.value: [t.value for t in allowed_transitions(status)]
        for status in OrderStatus
    }
