import logging
from typing import Optional

from sqlalchemy.orm import sessionmaker

from campus_eats.application.checkout import CheckoutRules, CheckoutService
from campus_eats.application.location import DeliveryTracker, LocationEngine, RunnerLocationTracker
from campus_eats.application.notifications import NotificationEmitter
from campus_eats.application.order_state_machine import OrderStateMachine
from campus_eats.application.session import SessionContext, SessionManager
from campus_eats.application.view_sync import RoleViewSynchronizer
from campus_eats.core.config import Settings, settings as default_settings
from campus_eats.core.retry import RetryPolicy, run_blocking
from campus_eats.domain.errors import InvalidRequest, OrderNotFound
from campus_eats.domain.models import Order, Vendor
from campus_eats.domain.order_status import Role
from campus_eats.domain.views import RoleView, build_view, runner_can_see
from campus_eats.infrastructure.identity_provider import InMemoryIdentityProvider
from campus_eats.infrastructure.repositories.notification_repository import SqlAlchemyNotificationRepository
from campus_eats.infrastructure.repositories.order_repository import SqlAlchemyOrderRepository
from campus_eats.infrastructure.repositories.vendor_repository import SqlAlchemyVendorRepository
from campus_eats.interfaces.IChangeFeed import IChangeFeed
from campus_eats.interfaces.IGeolocationSource import IGeolocationSource
from campus_eats.interfaces.IIdentityProvider import IIdentityProvider
from campus_eats.interfaces.INotificationRepository import INotificationRepository
from campus_eats.interfaces.IOrderRepository import IOrderRepository
from campus_eats.interfaces.IVendorRepository import IVendorRepository

logger = logging.getLogger(__name__)


class Marketplace:
    """
    Wires the order lifecycle services together around one change feed.
    Every service gets its collaborators through the constructor; there is no
    module-level "current user".
    """

    def __init__(
        self,
        orders: IOrderRepository,
        vendors: IVendorRepository,
        notifications: INotificationRepository,
        feed: IChangeFeed,
        identity: IIdentityProvider,
        config: Settings = default_settings,
        policy: Optional[RetryPolicy] = None,
    ):
        self.orders = orders
        self.vendors = vendors
        self.feed = feed
        self.config = config
        self.policy = policy or RetryPolicy.from_settings(config)
        self.identity = identity

        self.sessions = SessionManager(identity, self.policy)
        self.notifications = NotificationEmitter(notifications, vendors, feed, self.policy)
        self.state_machine = OrderStateMachine(orders, feed, vendors, self.policy)
        self.checkout = CheckoutService(orders, vendors, feed, CheckoutRules.from_settings(config), self.policy)
        self.location = LocationEngine(orders, feed, self.policy, config.RUNNER_SPEED_KMH)

        self.state_machine.on_transition(self.notifications.order_transitioned)
        self.checkout.on_placed(self.notifications.order_placed)

    def new_session_manager(self) -> SessionManager:
        """A fresh context holder, e.g. one per HTTP request or per connected client."""
        return SessionManager(self.identity, self.policy)

    async def register_vendor(self, session: SessionContext, name: str) -> Vendor:
        if not session.has_role(Role.VENDOR):
            raise InvalidRequest("Only vendor accounts can open a vendor")
        if not name or not name.strip():
            raise InvalidRequest("Vendor name is required")
        return await run_blocking(self.vendors.create, session.user_id, name.strip(), policy=self.policy)

    async def vendor_for(self, session: SessionContext) -> Optional[Vendor]:
        return await run_blocking(self.vendors.get_for_user, session.user_id, policy=self.policy)

    async def get_order(self, order_id: str, session: SessionContext) -> Order:
        """Point read, limited to orders the caller's active role can see."""
        order = await run_blocking(self.orders.get_by_id, order_id, policy=self.policy)
        if order is None or not await self._can_see(order, session):
            raise OrderNotFound(order_id)
        return order

    async def role_view(self, session: SessionContext) -> RoleView:
        orders = await run_blocking(
            self.orders.list_for_role, session.active_role, session.user_id, policy=self.policy
        )
        return build_view(session.active_role, session.user_id, orders)

    def view_synchronizer(self, session: SessionContext) -> RoleViewSynchronizer:
        return RoleViewSynchronizer(
            self.orders,
            self.vendors,
            self.feed,
            session.active_role,
            session.user_id,
            policy=self.policy,
            poll_interval=self.config.POLL_INTERVAL_SECONDS,
        )

    def runner_tracker(self, order_id: str, runner_id: str, source: IGeolocationSource) -> RunnerLocationTracker:
        return RunnerLocationTracker(self.location, source, order_id, runner_id)

    def delivery_tracker(self, order_id: str) -> DeliveryTracker:
        return DeliveryTracker(self.location, order_id)

    async def close(self) -> None:
        self.sessions.close()
        await self.feed.close()

    async def _can_see(self, order: Order, session: SessionContext) -> bool:
        role = session.active_role
        if role == Role.BUYER:
            return order.buyer_id == session.user_id
        if role == Role.RUNNER:
            # Point reads still reach the runner's own finished deliveries
            return order.runner_id == session.user_id or runner_can_see(order, session.user_id)
        vendor = await self.vendor_for(session)
        return vendor is not None and vendor.id == order.vendor_id


def build_marketplace(
    session_factory: sessionmaker,
    feed: IChangeFeed,
    identity: Optional[IIdentityProvider] = None,
    config: Settings = default_settings,
    policy: Optional[RetryPolicy] = None,
) -> Marketplace:
    return Marketplace(
        orders=SqlAlchemyOrderRepository(session_factory),
        vendors=SqlAlchemyVendorRepository(session_factory),
        notifications=SqlAlchemyNotificationRepository(session_factory),
        feed=feed,
        identity=identity or InMemoryIdentityProvider(),
        config=config,
        policy=policy,
    )
