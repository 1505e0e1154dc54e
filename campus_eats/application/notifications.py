import inspect
import logging
from typing import Any, Callable, List, Optional

from campus_eats.core.retry import RetryPolicy, run_blocking
from campus_eats.domain.errors import MarketplaceError
from campus_eats.domain.models import Notification, Order, new_id
from campus_eats.domain.order_status import OrderStatus
from campus_eats.infrastructure.change_feed import publish_after_commit
from campus_eats.interfaces.IChangeFeed import NOTIFICATIONS_TABLE, ChangeEvent, IChangeFeed
from campus_eats.interfaces.INotificationRepository import INotificationRepository
from campus_eats.interfaces.IVendorRepository import IVendorRepository

logger = logging.getLogger(__name__)

SEVERITY_BY_STATUS = {
    OrderStatus.DELIVERED.value: "success",
    OrderStatus.CANCELLED.value: "warning",
}

# Vendor owners hear about these besides placement
VENDOR_ALERT_STATUSES = {OrderStatus.ACCEPTED.value, OrderStatus.CANCELLED.value}

PushSink = Callable[[Notification], Any]


def short_id(order_id: str) -> str:
    return order_id[:8]


class NotificationEmitter:
    """
    Writes in-app notification records when orders are placed or change status.
    Emission is keyed by (recipient, order, status), so repeating it is harmless.
    An optional push sink gets a best-effort copy; its failures never fail the caller.
    """

    def __init__(
        self,
        notifications: INotificationRepository,
        vendors: IVendorRepository,
        feed: IChangeFeed,
        policy: Optional[RetryPolicy] = None,
        push_sink: Optional[PushSink] = None,
    ):
        self.notifications = notifications
        self.vendors = vendors
        self.feed = feed
        self.policy = policy
        self.push_sink = push_sink

    async def order_placed(self, order: Order) -> Optional[Notification]:
        vendor = await run_blocking(self.vendors.get_by_id, order.vendor_id, policy=self.policy)
        if vendor is None:
            logger.warning(f"⚠️ Vendor {order.vendor_id} missing, skipping new-order notification")
            return None
        return await self._emit(
            user_id=vendor.user_id,
            title="New Order",
            message=f"New order #{short_id(order.id)} for {order.total}",
            severity="info",
            order_id=order.id,
            dedup_key=f"{vendor.user_id}:{order.id}:{OrderStatus.PENDING.value}",
        )

    async def order_transitioned(self, order: Order, status: str) -> List[Notification]:
        status = OrderStatus(status).value
        vendor = await run_blocking(self.vendors.get_by_id, order.vendor_id, policy=self.policy)
        vendor_name = vendor.name if vendor else "your vendor"

        emitted = [
            await self._emit(
                user_id=order.buyer_id,
                title="Order Update",
                message=f"Your order from {vendor_name} is now {status}",
                severity=SEVERITY_BY_STATUS.get(status, "info"),
                order_id=order.id,
                dedup_key=f"{order.buyer_id}:{order.id}:{status}",
            )
        ]

        if vendor is not None and status in VENDOR_ALERT_STATUSES:
            if status == OrderStatus.ACCEPTED.value:
                title, message = "Runner Assigned", f"A runner accepted order #{short_id(order.id)}"
            else:
                title, message = "Order Cancelled", f"Order #{short_id(order.id)} was cancelled by the buyer"
            emitted.append(
                await self._emit(
                    user_id=vendor.user_id,
                    title=title,
                    message=message,
                    severity=SEVERITY_BY_STATUS.get(status, "info"),
                    order_id=order.id,
                    dedup_key=f"{vendor.user_id}:{order.id}:{status}",
                )
            )
        return emitted

    async def list_for(self, user_id: str, unread_only: bool = False, limit: int = 50) -> List[Notification]:
        return await run_blocking(self.notifications.list_for_user, user_id, unread_only, limit, policy=self.policy)

    async def unread_count(self, user_id: str) -> int:
        return await run_blocking(self.notifications.unread_count, user_id, policy=self.policy)

    async def mark_read(self, notification_id: str, user_id: str) -> bool:
        changed = await run_blocking(self.notifications.mark_read, notification_id, user_id, policy=self.policy)
        if changed:
            event = ChangeEvent(
                table=NOTIFICATIONS_TABLE,
                op="UPDATE",
                record={"id": notification_id, "user_id": user_id, "read": True},
            )
            await publish_after_commit(self.feed, event, self.policy)
        return changed

    async def _emit(self, user_id, title, message, severity, order_id, dedup_key) -> Notification:
        record = Notification(
            id=new_id(),
            user_id=user_id,
            title=title,
            message=message,
            severity=severity,
            order_id=order_id,
            dedup_key=dedup_key,
        )
        stored = await run_blocking(self.notifications.add, record, policy=self.policy)
        if stored.id != record.id:
            # Already emitted for this transition
            return stored

        event = ChangeEvent(table=NOTIFICATIONS_TABLE, op="INSERT", record=stored.to_dict())
        await publish_after_commit(self.feed, event, self.policy)
        await self._push(stored)
        return stored

    async def _push(self, notification: Notification) -> None:
        if self.push_sink is None:
            return
        try:
            result = self.push_sink(notification)
            if inspect.isawaitable(result):
                await result
        except (MarketplaceError, OSError, RuntimeError, ValueError) as e:
            logger.warning(f"⚠️ Push delivery failed for notification {notification.id}: {e}")
