import asyncio
from datetime import timedelta
from decimal import Decimal

from campus_eats.application.checkout import CartLine, DeliveryTarget
from campus_eats.domain.models import Order, new_id, utcnow
from campus_eats.domain.order_status import OrderStatus

BUYER = "buyer-1"
VENDOR_OWNER = "vendor-owner-1"
RUNNER_A = "runner-a"
RUNNER_B = "runner-b"

DORM = DeliveryTarget(address="Hall B, Room 214", latitude=40.0, longitude=-75.0)


def cart_for(vendor_id, *lines):
    """lines: (name, price, quantity)"""
    return [
        CartLine(
            vendor_id=vendor_id,
            menu_item_id=f"item-{name.lower()}",
            name=name,
            unit_price=Decimal(price),
            quantity=quantity,
        )
        for name, price, quantity in lines
    ]


async def place_one(marketplace, vendor, buyer_id=BUYER):
    """A pending order with two line items: 2 x 8.99 + 1 x 8.99 = 26.97."""
    lines = cart_for(vendor.id, ("Burrito", "8.99", 2), ("Taco", "8.99", 1))
    placed = await marketplace.checkout.place_orders(buyer_id, lines, DORM)
    return placed[0]


async def deliver_to_status(marketplace, order, status):
    """Walk a pending order along the happy path up to ``status``."""
    sm = marketplace.state_machine
    path = ["accepted", "preparing", "delivering", "delivered"]
    for step in path[: path.index(status) + 1]:
        if step == "accepted":
            await sm.claim(order.id, RUNNER_A)
        elif step == "preparing":
            await sm.advance(order.id, "vendor", step, actor_id=VENDOR_OWNER)
        else:
            await sm.advance(order.id, "runner", step, actor_id=RUNNER_A)


def make_order(**overrides) -> Order:
    now = overrides.pop("created_at", utcnow())
    fields = dict(
        id=new_id(),
        created_at=now,
        buyer_id=BUYER,
        vendor_id="vendor-x",
        runner_id=None,
        items=[{"menu_item_id": "m1", "name": "Bagel", "unit_price": "6.00", "quantity": 1}],
        subtotal=Decimal("6.00"),
        tax=Decimal("0.48"),
        delivery_fee=Decimal("2.99"),
        total=Decimal("9.47"),
        status=OrderStatus.PENDING.value,
        delivery_address="Library steps",
        estimated_delivery_at=now + timedelta(minutes=30),
    )
    fields.update(overrides)
    return Order(**fields)


async def wait_for(predicate, timeout: float = 2.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.01)
