"""
Role-scoped views: the slice of the shared order set each actor sees.

These are derived, never stored. The runner view is built from a single
query result and partitioned locally so "available" and "mine" always come
from the same snapshot.
"""
from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Sequence

from campus_eats.domain.order_status import ACTIVE_STATES, OrderStatus, Role


def newest_first(orders: Sequence) -> List:
    return sorted(orders, key=lambda o: o.created_at, reverse=True)


def runner_can_see(order, runner_id: str) -> bool:
    if order.runner_id == runner_id:
        return order.status != OrderStatus.DELIVERED.value
    return order.status == OrderStatus.PENDING.value and order.runner_id is None


@dataclass
class RoleView:
    role: Role
    user_id: str
    orders: List = field(default_factory=list)

    # runner partitions
    available: List = field(default_factory=list)
    mine: List = field(default_factory=list)
    completed_count: int = 0
    earnings: Decimal = Decimal("0.00")

    # vendor partitions
    active: List = field(default_factory=list)
    completed: List = field(default_factory=list)

    def find(self, order_id: str):
        return next((o for o in self.orders if o.id == order_id), None)

    def to_dict(self) -> dict:
        payload = {
            "role": self.role.value,
            "user_id": self.user_id,
            "orders": [o.id for o in self.orders],
        }
        if self.role == Role.RUNNER:
            payload.update({
                "available": [o.id for o in self.available],
                "mine": [o.id for o in self.mine],
                "completed_count": self.completed_count,
                "earnings": str(self.earnings),
            })
        elif self.role == Role.VENDOR:
            payload.update({
                "active": [o.id for o in self.active],
                "completed": [o.id for o in self.completed],
            })
        return payload


def build_view(role: Role, user_id: str, orders: Sequence) -> RoleView:
    role = Role(role)
    ordered = newest_first(orders)
    view = RoleView(role=role, user_id=user_id)

    if role == Role.RUNNER:
        # Own delivered rows only feed the totals
        delivered = [o for o in ordered if o.runner_id == user_id and o.status == OrderStatus.DELIVERED.value]
        # Never trust the query alone: drop anything claimed by someone else
        ordered = [o for o in ordered if runner_can_see(o, user_id)]
        view.available = [o for o in ordered if o.runner_id is None]
        view.mine = [o for o in ordered if o.runner_id == user_id]
        view.completed_count = len(delivered)
        view.earnings = sum((Decimal(o.delivery_fee or 0) for o in delivered), Decimal("0.00"))
    elif role == Role.VENDOR:
        view.active = [o for o in ordered if o.status in {s.value for s in ACTIVE_STATES}]
        view.completed = [o for o in ordered if o.status == OrderStatus.DELIVERED.value]

    view.orders = ordered
    return view
