"""
Realtime role-view synchronizer.

Subscribes to the orders change feed (scoped by a single equality filter where
the role allows one) and, on every event, re-runs the full role query instead
of patching the local view. Events are handled one at a time, in receipt
order.

If the feed cannot be subscribed, the synchronizer degrades to polling at a
bounded interval and keeps trying to resubscribe; push and polling never run
at the same time.

Local writes may be applied optimistically: the affected order is tagged
``pending_write`` until the write settles as ``confirmed`` or ``rejected``;
a rejected write is rolled back out of the view.
"""
import asyncio
import inspect
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

from campus_eats.core.retry import RetryPolicy, run_blocking
from campus_eats.domain.errors import MarketplaceError
from campus_eats.domain.models import Order
from campus_eats.domain.order_status import Role
from campus_eats.domain.views import RoleView, build_view
from campus_eats.interfaces.IChangeFeed import ORDERS_TABLE, ChangeFilter, IChangeFeed, Subscription
from campus_eats.interfaces.IOrderRepository import IOrderRepository
from campus_eats.interfaces.IVendorRepository import IVendorRepository

logger = logging.getLogger(__name__)

ViewListener = Callable[[RoleView], Any]


class SyncMode(str, Enum):
    IDLE = "idle"
    PUSH = "push"
    POLLING = "polling"


class WriteState(str, Enum):
    PENDING_WRITE = "pending_write"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"


@dataclass
class LocalWrite:
    order_id: str
    fields: Dict[str, Any]
    state: WriteState = WriteState.PENDING_WRITE
    error: Optional[MarketplaceError] = None


class RoleViewSynchronizer:

    def __init__(
        self,
        orders: IOrderRepository,
        vendors: IVendorRepository,
        feed: IChangeFeed,
        role: Role,
        user_id: str,
        policy: Optional[RetryPolicy] = None,
        poll_interval: float = 10.0,
    ):
        if not user_id:
            raise ValueError("A view needs an actor id")
        self.orders = orders
        self.vendors = vendors
        self.feed = feed
        self.role = Role(role)
        self.user_id = user_id
        self.policy = policy
        self.poll_interval = min(max(poll_interval, 1.0), 60.0)

        self.view: RoleView = build_view(self.role, user_id, [])
        self.mode = SyncMode.IDLE
        self.last_error: Optional[MarketplaceError] = None
        self.writes: Dict[str, LocalWrite] = {}

        self._fetched: List = []
        self._listeners: List[ViewListener] = []
        self._subscription: Optional[Subscription] = None
        self._task: Optional[asyncio.Task] = None

    # -------------------- LIFECYCLE --------------------

    async def start(self) -> RoleView:
        if self._task is not None:
            return self.view
        # Subscribe before the first fetch so nothing falls between the two
        if not await self._try_subscribe():
            logger.warning(
                f"⚠️ ViewSync[{self.role.value}:{self.user_id}]: change feed unavailable, "
                f"polling every {self.poll_interval}s"
            )
            self.mode = SyncMode.POLLING
        try:
            await self.refresh()
        except MarketplaceError:
            await self._close_subscription()
            self.mode = SyncMode.IDLE
            raise
        self._task = asyncio.create_task(self._run())
        return self.view

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        await self._close_subscription()
        self.mode = SyncMode.IDLE

    async def switch_actor(self, role: Role, user_id: str) -> RoleView:
        await self.stop()
        self.role = Role(role)
        self.user_id = user_id
        self.writes.clear()
        self._fetched = []
        self.view = build_view(self.role, user_id, [])
        return await self.start()

    async def __aenter__(self) -> "RoleViewSynchronizer":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    def on_change(self, listener: ViewListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # -------------------- FETCH --------------------

    async def refresh(self) -> RoleView:
        orders = await run_blocking(self.orders.list_for_role, self.role, self.user_id, policy=self.policy)
        self._fetched = list(orders)
        self.last_error = None
        self._prune_settled()
        await self._rebuild()
        return self.view

    async def _refresh_quietly(self) -> None:
        try:
            await self.refresh()
        except MarketplaceError as e:
            # Keep showing the last good view
            self.last_error = e
            logger.warning(f"⚠️ ViewSync[{self.role.value}:{self.user_id}]: refresh failed: {e}")

    # -------------------- OPTIMISTIC WRITES --------------------

    async def apply_optimistic(self, order_id: str, fields: Dict[str, Any], write: Callable[[], Awaitable[Any]]):
        """
        Show ``fields`` on ``order_id`` now, then settle on the outcome of ``write``.
        Settled entries stay in ``writes`` until the next successful refresh.
        """
        local = LocalWrite(order_id=order_id, fields=dict(fields))
        self.writes[order_id] = local
        await self._rebuild()

        try:
            result = await write()
        except MarketplaceError as e:
            local.state = WriteState.REJECTED
            local.error = e
            logger.info(f"⚠️ ViewSync: local write on {order_id} rejected ({e.kind.value}), rolled back")
            await self._rebuild()
            raise

        local.state = WriteState.CONFIRMED
        await self._refresh_quietly()
        return result

    def _prune_settled(self) -> None:
        # A fresh fetch supersedes every settled write
        for order_id, local in list(self.writes.items()):
            if local.state != WriteState.PENDING_WRITE:
                del self.writes[order_id]

    def write_state(self, order_id: str) -> Optional[WriteState]:
        local = self.writes.get(order_id)
        return local.state if local else None

    def _overlaid(self) -> List:
        pending = {w.order_id: w for w in self.writes.values() if w.state == WriteState.PENDING_WRITE}
        if not pending:
            return self._fetched
        result = []
        for order in self._fetched:
            local = pending.get(order.id)
            if local is None:
                result.append(order)
            else:
                # Detached copy; the fetched row is never mutated so the overlay can be dropped
                result.append(Order(**{**order.to_dict(), **local.fields}))
        return result

    async def _rebuild(self) -> None:
        self.view = build_view(self.role, self.user_id, self._overlaid())
        for listener in list(self._listeners):
            try:
                result = listener(self.view)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"❌ ViewSync listener failed: {e}", exc_info=True)

    # -------------------- CHANGE FEED --------------------

    async def _scope(self) -> Optional[ChangeFilter]:
        if self.role == Role.BUYER:
            return ChangeFilter("buyer_id", self.user_id)
        if self.role == Role.VENDOR:
            vendor = await run_blocking(self.vendors.get_for_user, self.user_id, policy=self.policy)
            return ChangeFilter("vendor_id", vendor.id if vendor else None)
        # Runners must see new pending orders and claims by others
        return None

    async def _try_subscribe(self) -> bool:
        try:
            self._subscription = await self.feed.subscribe(ORDERS_TABLE, await self._scope())
        except MarketplaceError as e:
            self.last_error = e
            return False
        self.mode = SyncMode.PUSH
        return True

    async def _close_subscription(self) -> None:
        subscription, self._subscription = self._subscription, None
        if subscription is not None:
            await subscription.close()

    async def _run(self) -> None:
        while True:
            if self._subscription is not None:
                try:
                    async for _event in self._subscription:
                        await self._refresh_quietly()
                    return
                except MarketplaceError as e:
                    self.last_error = e
                    logger.warning(f"⚠️ ViewSync: change feed dropped ({e}), falling back to polling")
                    await self._close_subscription()
                    self.mode = SyncMode.POLLING
            else:
                await asyncio.sleep(self.poll_interval)
                await self._refresh_quietly()
                if await self._try_subscribe():
                    logger.info(f"✅ ViewSync[{self.role.value}:{self.user_id}]: change feed restored")
                    # Pick up anything that changed between the poll and the subscribe
                    await self._refresh_quietly()
