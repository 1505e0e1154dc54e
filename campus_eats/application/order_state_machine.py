"""
Order state machine: validates a requested transition against the current
status and the actor's role, then applies it as ONE conditional update.

The update's match predicate re-states the precondition (e.g. ``status =
pending AND runner_id IS NULL`` for a claim), so two racing callers cannot
both succeed: the loser's update affects zero rows and is reported as a
conflict. Only the transport is retried; business-rule rejections are
raised immediately.
"""
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Optional

from campus_eats.core.retry import RetryPolicy, run_blocking
from campus_eats.domain.errors import ClaimConflict, InvalidTransition, OrderNotFound
from campus_eats.domain.models import Order
from campus_eats.domain.order_status import (
    ALLOWED_TRANSITIONS,
    OrderStatus,
    Role,
    role_for_transition,
)
from campus_eats.infrastructure.change_feed import publish_after_commit
from campus_eats.interfaces.IChangeFeed import ChangeEvent, IChangeFeed
from campus_eats.interfaces.IOrderRepository import IOrderRepository, UpdateOutcome
from campus_eats.interfaces.IVendorRepository import IVendorRepository

logger = logging.getLogger(__name__)

TransitionListener = Callable[[Order, str], Awaitable[None]]


@dataclass(frozen=True)
class TransitionResult:
    order: Order
    previous: OrderStatus
    changed: bool  # False when the order was already in the target state


def _parse_status(value) -> OrderStatus:
    try:
        return OrderStatus(value)
    except ValueError:
        raise InvalidTransition(f"'{value}' is not an order status", target=str(value))


def _owner_of_edges_into(target: OrderStatus) -> Optional[Role]:
    owners = {role for (_, to), role in ALLOWED_TRANSITIONS.items() if to == target}
    return owners.pop() if len(owners) == 1 else None


class OrderStateMachine:

    def __init__(
        self,
        orders: IOrderRepository,
        feed: IChangeFeed,
        vendors: Optional[IVendorRepository] = None,
        policy: Optional[RetryPolicy] = None,
    ):
        self.orders = orders
        self.feed = feed
        self.vendors = vendors
        self.policy = policy
        self._listeners: List[TransitionListener] = []

    def on_transition(self, listener: TransitionListener) -> None:
        self._listeners.append(listener)

    # -------------------- COMMANDS --------------------

    async def claim(self, order_id: str, runner_id: str) -> TransitionResult:
        """pending & unassigned -> accepted, atomically assigning ``runner_id``."""
        changes = {"runner_id": runner_id, "status": OrderStatus.ACCEPTED}
        match = {"status": OrderStatus.PENDING, "runner_id": None}
        outcome = await run_blocking(self.orders.update_fields, order_id, changes, match, policy=self.policy)

        if outcome == UpdateOutcome.NOT_FOUND:
            raise OrderNotFound(order_id)

        order = await self._load(order_id)
        if outcome == UpdateOutcome.APPLIED:
            logger.info(f"✅ Order {order_id} claimed by runner {runner_id}")
            return await self._applied(order, OrderStatus.PENDING, OrderStatus.ACCEPTED)

        if order.runner_id == runner_id and order.status == OrderStatus.ACCEPTED.value:
            # Our own earlier attempt landed (e.g. the ack was lost and the call retried)
            return await self._already_applied(order, OrderStatus.PENDING, OrderStatus.ACCEPTED)
        if order.runner_id is not None and order.runner_id != runner_id:
            logger.info(f"⚠️ Claim on order {order_id} lost to runner {order.runner_id}")
            raise ClaimConflict(order_id)
        raise InvalidTransition(
            f"Order can no longer be claimed (it is {order.status})",
            current=order.status,
            target=OrderStatus.ACCEPTED.value,
        )

    async def advance(
        self,
        order_id: str,
        actor_role: Role,
        target_status,
        actor_id: Optional[str] = None,
    ) -> TransitionResult:
        role = Role(actor_role)
        target = _parse_status(target_status)

        if target == OrderStatus.ACCEPTED:
            if role != Role.RUNNER or actor_id is None:
                raise InvalidTransition("Only a runner can accept an order", target=target.value)
            return await self.claim(order_id, actor_id)
        if target == OrderStatus.CANCELLED:
            if role != Role.BUYER or actor_id is None:
                raise InvalidTransition("Only the buyer can cancel an order", target=target.value)
            return await self.cancel(order_id, actor_id)

        order = await self._load(order_id)
        current = OrderStatus(order.status)

        if current == target:
            if _owner_of_edges_into(target) != role:
                raise InvalidTransition(
                    f"A {role.value} cannot move an order to {target.value}",
                    current=current.value,
                    target=target.value,
                )
            if actor_id is not None:
                await self._check_actor(order, role, actor_id)
            return await self._already_applied(order, current, target)

        required = role_for_transition(current, target)
        if required is None:
            raise InvalidTransition(
                f"Cannot move an order from {current.value} to {target.value}",
                current=current.value,
                target=target.value,
            )
        if required != role:
            raise InvalidTransition(
                f"A {role.value} cannot move an order from {current.value} to {target.value}",
                current=current.value,
                target=target.value,
            )

        match: Dict[str, object] = {"status": current}
        if actor_id is not None:
            await self._check_actor(order, role, actor_id)
            if role == Role.RUNNER:
                match["runner_id"] = actor_id

        outcome = await run_blocking(
            self.orders.update_fields, order_id, {"status": target}, match, policy=self.policy
        )
        return await self._settle(order_id, order, current, target, outcome)

    async def cancel(self, order_id: str, actor_id: str) -> TransitionResult:
        """Buyer-initiated cancel; only while still pending."""
        order = await self._load(order_id)
        current = OrderStatus(order.status)
        target = OrderStatus.CANCELLED

        if order.buyer_id != actor_id:
            raise InvalidTransition("Only the buyer who placed this order can cancel it", current.value, target.value)
        if current == target:
            return await self._already_applied(order, current, target)
        if current != OrderStatus.PENDING:
            raise InvalidTransition(
                f"Orders can only be cancelled while pending (this one is {current.value})",
                current=current.value,
                target=target.value,
            )

        match = {"status": OrderStatus.PENDING, "runner_id": None, "buyer_id": actor_id}
        outcome = await run_blocking(
            self.orders.update_fields, order_id, {"status": target}, match, policy=self.policy
        )
        return await self._settle(order_id, order, current, target, outcome)

    # -------------------- INTERNALS --------------------

    async def _load(self, order_id: str) -> Order:
        order = await run_blocking(self.orders.get_by_id, order_id, policy=self.policy)
        if order is None:
            raise OrderNotFound(order_id)
        return order

    async def _check_actor(self, order: Order, role: Role, actor_id: str) -> None:
        if role == Role.RUNNER and order.runner_id != actor_id:
            raise InvalidTransition("You are not the runner assigned to this order", order.status)
        if role == Role.VENDOR and self.vendors is not None:
            vendor = await run_blocking(self.vendors.get_for_user, actor_id, policy=self.policy)
            if vendor is None or vendor.id != order.vendor_id:
                raise InvalidTransition("This order belongs to another vendor", order.status)

    async def _settle(
        self,
        order_id: str,
        order: Order,
        current: OrderStatus,
        target: OrderStatus,
        outcome: UpdateOutcome,
    ) -> TransitionResult:
        if outcome == UpdateOutcome.NOT_FOUND:
            raise OrderNotFound(order_id)
        if outcome == UpdateOutcome.APPLIED:
            order.status = target.value
            logger.info(f"✅ Order {order_id}: {current.value} -> {target.value}")
            return await self._applied(order, current, target)

        fresh = await self._load(order_id)
        if fresh.status == target.value:
            return await self._already_applied(fresh, current, target)
        raise InvalidTransition(
            f"Order changed to {fresh.status} before this update could be applied",
            current=fresh.status,
            target=target.value,
        )

    async def _applied(self, order: Order, previous: OrderStatus, target: OrderStatus) -> TransitionResult:
        await publish_after_commit(self.feed, ChangeEvent.for_order(order), self.policy)
        await self._notify(order, target)
        return TransitionResult(order=order, previous=previous, changed=True)

    async def _already_applied(self, order: Order, previous: OrderStatus, target: OrderStatus) -> TransitionResult:
        # Re-announce: an earlier attempt may have committed without publishing or notifying.
        # Views re-query on any event and listeners dedup per (order, status).
        await publish_after_commit(self.feed, ChangeEvent.for_order(order), self.policy)
        await self._notify(order, target)
        return TransitionResult(order=order, previous=previous, changed=False)

    async def _notify(self, order: Order, target: OrderStatus) -> None:
        for listener in list(self._listeners):
            try:
                await listener(order, target.value)
            except Exception as e:
                logger.error(f"❌ Transition listener failed for order {order.id}: {e}", exc_info=True)
