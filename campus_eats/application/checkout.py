import logging
from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal, InvalidOperation
from typing import Dict, List, Optional, Sequence

from campus_eats.core.retry import RetryPolicy, run_blocking
from campus_eats.domain.errors import InvalidRequest
from campus_eats.domain.models import Order, new_id, utcnow
from campus_eats.domain.order_status import OrderStatus, PaymentMethod, PaymentStatus
from campus_eats.domain.pricing import LineItem, compute_totals, subtotal_of, to_money
from campus_eats.infrastructure.change_feed import publish_after_commit
from campus_eats.interfaces.IChangeFeed import ChangeEvent, IChangeFeed
from campus_eats.interfaces.IOrderRepository import IOrderRepository
from campus_eats.interfaces.IVendorRepository import IVendorRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CartLine:
    vendor_id: str
    menu_item_id: str
    name: str
    unit_price: Decimal
    quantity: int


@dataclass(frozen=True)
class DeliveryTarget:
    address: str
    notes: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None


@dataclass(frozen=True)
class CheckoutRules:
    tax_rate: float = 0.08
    delivery_fee: float = 2.99
    min_subtotal: float = 5.00
    max_items: int = 20
    estimated_delivery_minutes: int = 30

    @classmethod
    def from_settings(cls, settings) -> "CheckoutRules":
        return cls(
            tax_rate=settings.TAX_RATE,
            delivery_fee=settings.DELIVERY_FEE,
            min_subtotal=settings.MIN_ORDER_SUBTOTAL,
            max_items=settings.MAX_ORDER_ITEMS,
            estimated_delivery_minutes=settings.ESTIMATED_DELIVERY_MINUTES,
        )


def _line_item(line: CartLine) -> LineItem:
    try:
        price = to_money(line.unit_price)
    except (InvalidOperation, ValueError):
        raise InvalidRequest(f"Invalid price for {line.name or line.menu_item_id}")
    if price < 0:
        raise InvalidRequest(f"Invalid price for {line.name or line.menu_item_id}")
    if int(line.quantity) < 1:
        raise InvalidRequest(f"Quantity for {line.name or line.menu_item_id} must be at least 1")
    return LineItem(menu_item_id=line.menu_item_id, name=line.name, unit_price=price, quantity=int(line.quantity))


def group_by_vendor(lines: Sequence[CartLine]) -> Dict[str, List[LineItem]]:
    """One bucket per vendor, in the order vendors first appear in the cart."""
    groups: Dict[str, List[LineItem]] = {}
    for line in lines:
        groups.setdefault(line.vendor_id, []).append(_line_item(line))
    return groups


class CheckoutService:
    """
    Turns a buyer's cart into orders, one per vendor.
    Prices are snapshotted onto the order; totals are computed here once and
    never again.
    """

    def __init__(
        self,
        orders: IOrderRepository,
        vendors: IVendorRepository,
        feed: IChangeFeed,
        rules: Optional[CheckoutRules] = None,
        policy: Optional[RetryPolicy] = None,
    ):
        self.orders = orders
        self.vendors = vendors
        self.feed = feed
        self.rules = rules or CheckoutRules()
        self.policy = policy
        self._placed_listeners = []

    def on_placed(self, listener) -> None:
        self._placed_listeners.append(listener)

    async def place_orders(
        self,
        buyer_id: str,
        lines: Sequence[CartLine],
        delivery: DeliveryTarget,
        payment_method: str = PaymentMethod.CASH.value,
    ) -> List[Order]:
        self._validate_cart(lines, delivery)
        try:
            method = PaymentMethod(payment_method).value
        except ValueError:
            raise InvalidRequest("Payment method must be cash or card")

        groups = group_by_vendor(lines)
        all_items = [item for items in groups.values() for item in items]
        if subtotal_of(all_items) < to_money(self.rules.min_subtotal):
            raise InvalidRequest(f"Minimum order is ${to_money(self.rules.min_subtotal)}")

        await self._check_vendors(list(groups))

        now = utcnow()
        eta = now + timedelta(minutes=self.rules.estimated_delivery_minutes)
        orders = []
        for vendor_id, items in groups.items():
            totals = compute_totals(items, self.rules.tax_rate, self.rules.delivery_fee)
            orders.append(
                Order(
                    id=new_id(),  # client-generated so a retried insert is a no-op
                    created_at=now,
                    buyer_id=buyer_id,
                    vendor_id=vendor_id,
                    runner_id=None,
                    items=[item.to_json() for item in items],
                    subtotal=totals.subtotal,
                    tax=totals.tax,
                    delivery_fee=totals.delivery_fee,
                    total=totals.total,
                    status=OrderStatus.PENDING.value,
                    payment_status=PaymentStatus.PENDING.value,
                    payment_method=method,
                    delivery_address=delivery.address.strip(),
                    delivery_notes=delivery.notes,
                    delivery_lat=delivery.latitude,
                    delivery_lng=delivery.longitude,
                    estimated_delivery_at=eta,
                )
            )

        stored = await run_blocking(self.orders.insert_many, orders, policy=self.policy)
        logger.info(f"✅ Checkout: {len(stored)} order(s) placed for buyer {buyer_id}")

        for order in stored:
            await publish_after_commit(self.feed, ChangeEvent.for_order(order, op="INSERT"), self.policy)
            for listener in list(self._placed_listeners):
                try:
                    await listener(order)
                except Exception as e:
                    logger.error(f"❌ Order-placed listener failed for {order.id}: {e}", exc_info=True)
        return stored

    def _validate_cart(self, lines: Sequence[CartLine], delivery: DeliveryTarget) -> None:
        if not lines:
            raise InvalidRequest("Your cart is empty")
        if len(lines) > self.rules.max_items:
            raise InvalidRequest(f"Maximum {self.rules.max_items} items per order")
        if not delivery.address or not delivery.address.strip():
            raise InvalidRequest("Delivery address is required")
        if (delivery.latitude is None) != (delivery.longitude is None):
            raise InvalidRequest("Delivery latitude and longitude must be given together")

    async def _check_vendors(self, vendor_ids: List[str]) -> None:
        found = await run_blocking(self.vendors.get_many, vendor_ids, policy=self.policy)
        by_id = {v.id: v for v in found}
        for vendor_id in vendor_ids:
            vendor = by_id.get(vendor_id)
            if vendor is None:
                raise InvalidRequest(f"Vendor {vendor_id} does not exist")
            if not vendor.is_active:
                raise InvalidRequest(f"{vendor.name} is not accepting orders right now")
