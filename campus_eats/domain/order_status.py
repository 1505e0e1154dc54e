"""
Order lifecycle: the closed set of delivery states and the five legal edges.

    pending -> accepted -> preparing -> delivering -> delivered
    pending -> cancelled

Each edge is owned by exactly one actor role. The claim edge
(pending -> accepted) additionally sets ``runner_id`` and is only ever
applied as a conditional update.
"""
from enum import Enum
from typing import Dict, FrozenSet, Optional, Tuple


class OrderStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    PREPARING = "preparing"
    DELIVERING = "delivering"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class PaymentMethod(str, Enum):
    CASH = "cash"
    CARD = "card"


class Role(str, Enum):
    BUYER = "buyer"
    VENDOR = "vendor"
    RUNNER = "runner"


Edge = Tuple[OrderStatus, OrderStatus]

# edge -> role allowed to perform it
ALLOWED_TRANSITIONS: Dict[Edge, Role] = {
    (OrderStatus.PENDING, OrderStatus.ACCEPTED): Role.RUNNER,
    (OrderStatus.ACCEPTED, OrderStatus.PREPARING): Role.VENDOR,
    (OrderStatus.PREPARING, OrderStatus.DELIVERING): Role.RUNNER,
    (OrderStatus.DELIVERING, OrderStatus.DELIVERED): Role.RUNNER,
    (OrderStatus.PENDING, OrderStatus.CANCELLED): Role.BUYER,
}

TERMINAL_STATES: FrozenSet[OrderStatus] = frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED})

# Statuses shown on a vendor's "active" board
ACTIVE_STATES: FrozenSet[OrderStatus] = frozenset({
    OrderStatus.PENDING,
    OrderStatus.ACCEPTED,
    OrderStatus.PREPARING,
    OrderStatus.DELIVERING,
})

# Fields a runner/vendor/buyer action may write. Everything else is fixed at creation.
MUTABLE_FIELDS: FrozenSet[str] = frozenset({
    "status",
    "runner_id",
    "payment_status",
    "runner_lat",
    "runner_lng",
    "last_location_update",
})


def is_valid_transition(current: OrderStatus, target: OrderStatus) -> bool:
    return (OrderStatus(current), OrderStatus(target)) in ALLOWED_TRANSITIONS


def role_for_transition(current: OrderStatus, target: OrderStatus) -> Optional[Role]:
    return ALLOWED_TRANSITIONS.get((OrderStatus(current), OrderStatus(target)))


def successors(current: OrderStatus) -> FrozenSet[OrderStatus]:
    current = OrderStatus(current)
    return frozenset(target for (source, target) in ALLOWED_TRANSITIONS if source == current)
