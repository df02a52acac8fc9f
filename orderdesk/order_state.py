"""
Order lifecycle state machine. Every orderStatus write is checked against VALID_TRANSITIONS.
"""
from enum import Enum


class OrderStatus(str, Enum):
    pending = "pending"
    processing = "processing"
    shipped = "shipped"
    in_transit = "in_transit"
    delivered = "delivered"
    cancelled = "cancelled"


class PaymentStatus(str, Enum):
    pending = "pending"
    paid = "paid"
    processing = "processing"
    failed = "failed"


# Current status -> allowed next status. Shipments pass through in_transit before delivered.
VALID_TRANSITIONS: dict[OrderStatus, list[OrderStatus]] = {
    OrderStatus.pending: [OrderStatus.processing, OrderStatus.cancelled],
    OrderStatus.processing: [OrderStatus.shipped, OrderStatus.cancelled],
    OrderStatus.shipped: [OrderStatus.in_transit, OrderStatus.cancelled],
    OrderStatus.in_transit: [OrderStatus.delivered, OrderStatus.cancelled],
    OrderStatus.delivered: [OrderStatus.delivered],  # terminal
    OrderStatus.cancelled: [OrderStatus.cancelled],  # terminal
}

TERMINAL_STATUSES = frozenset({OrderStatus.delivered, OrderStatus.cancelled})


def valid_next_states(current: OrderStatus | str) -> list[OrderStatus]:
    return list(VALID_TRANSITIONS.get(OrderStatus(current), []))


def is_valid_transition(current: OrderStatus | str, target: OrderStatus | str) -> bool:
    """True if target is allowed after current."""
    return OrderStatus(target) in VALID_TRANSITIONS.get(OrderStatus(current), [])
